"""High-level client tying the session pieces together.

Owns one aiohttp ClientSession and walks a build through its strictly
sequential stages: the creation stream is consumed to completion
before the channel is opened, and the dispatcher then owns every
inbound frame for the life of that channel. Commands are sent
independently through ``commands``.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import aiohttp

from vibegen.adapters.channel import Channel, open_channel
from vibegen.adapters.commands import CommandSender
from vibegen.adapters.dispatcher import Materializer, MessageDispatcher, SessionState
from vibegen.adapters.events import CreationFrame, SessionCreated
from vibegen.adapters.initiator import SessionInitiator
from vibegen.engine.config import ClientConfig, ObserverCallback
from vibegen.engine.errors import NotConnectedError
from vibegen.engine.models import BuildRequest, Session
from vibegen.shared.services.materializer import ArtifactMaterializer

logger = logging.getLogger(__name__)


class GenerationClient:
    """One build session: create, connect, reconcile, command."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http: aiohttp.ClientSession | None = None,
        materializer: Materializer | None = None,
        frame_callback: ObserverCallback | None = None,
        notice_callback: ObserverCallback | None = None,
    ) -> None:
        self._config = config or ClientConfig.from_env()
        self._http = http
        self._owns_http = http is None
        self._materializer = materializer or ArtifactMaterializer(
            Path(self._config.output_dir)
        )
        self._frame_callback = frame_callback
        self._notice_callback = notice_callback
        self._session: Session | None = None
        self._channel: Channel | None = None
        self._dispatcher: MessageDispatcher | None = None

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def channel(self) -> Channel | None:
        return self._channel

    @property
    def state(self) -> SessionState | None:
        return self._dispatcher.state if self._dispatcher else None

    @property
    def commands(self) -> CommandSender:
        if self._channel is None:
            raise NotConnectedError("no channel")
        return CommandSender(self._channel)

    def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None:
            # Generation streams run as long as the server needs.
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None),
            )
        return self._http

    def _initiator(self) -> SessionInitiator:
        return SessionInitiator(self._get_http(), self._config)

    async def create_session(self, request: BuildRequest) -> AsyncIterator[CreationFrame]:
        """Yield creation frames, recording the Session as it appears."""
        async for frame in self._initiator().create_session(request):
            if isinstance(frame, SessionCreated):
                self._session = frame.session
            yield frame

    async def connect_existing(self, session_id: str) -> Session:
        self._session = await self._initiator().connect_existing(session_id)
        return self._session

    async def check_health(self) -> dict[str, Any]:
        return await self._initiator().check_health()

    async def connect(self, session: Session | None = None) -> Channel:
        """Open a fresh channel for *session* (default: the current one).

        The local state mirror is kept across reconnects of the same
        session; the connection-sync frame brings it up to date.
        """
        session = session or self._session
        if session is None:
            raise NotConnectedError("no session")
        if self._channel is not None:
            await self._channel.close()
        self._channel = await open_channel(
            self._get_http(),
            session,
            origin=self._config.api_origin,
            credential=self._config.auth_token or None,
        )
        state = None
        if self._dispatcher is not None and self._dispatcher.state.session_id == session.id:
            state = self._dispatcher.state
        self._dispatcher = MessageDispatcher(
            session,
            self._materializer,
            state=state,
            conversation_tail=self._config.conversation_tail,
            frame_callback=self._frame_callback,
            notice_callback=self._notice_callback,
        )
        self._session = session
        return self._channel

    async def run(self) -> SessionState:
        """Dispatch inbound frames until the channel closes."""
        if self._channel is None or self._dispatcher is None:
            raise NotConnectedError("no channel")
        await self._dispatcher.run(self._channel)
        return self._dispatcher.state

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close()
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    async def __aenter__(self) -> GenerationClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
