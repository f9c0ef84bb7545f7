"""Persistent duplex channel bound to one Session.

A Channel is a single-use handle: CONNECTING until ``open()``
succeeds, then OPEN until either side closes it. There is no
reconnection; callers open a new Channel for the same Session
and receive a fresh connection-sync snapshot.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
from yarl import URL

from vibegen.engine.errors import ConnectError, NotConnectedError
from vibegen.engine.lifecycle import ChannelState, validate_channel_transition
from vibegen.engine.models import Session

logger = logging.getLogger(__name__)


class Channel:
    """WebSocket connection to the session's channel endpoint."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        session: Session,
        *,
        origin: str,
        credential: str | None = None,
    ) -> None:
        self._http = http
        self._session = session
        self._origin = origin
        self._credential = credential or None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._state = ChannelState.CONNECTING

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ChannelState.OPEN

    @property
    def url(self) -> str:
        """Channel endpoint with the credential attached, if any."""
        endpoint = URL(self._session.channel_endpoint)
        if self._credential:
            endpoint = endpoint.update_query(token=self._credential)
        return str(endpoint)

    def _set_state(self, target: ChannelState) -> None:
        validate_channel_transition(self._state, target)
        logger.debug(
            "Channel %s: %s -> %s", self._session.id, self._state.value, target.value,
        )
        self._state = target

    async def open(self) -> Channel:
        """Perform the handshake. Raises ConnectError on failure."""
        if self._state != ChannelState.CONNECTING:
            raise ConnectError(
                self._session.channel_endpoint,
                f"channel already used (state: {self._state.value})",
            )
        try:
            self._ws = await self._http.ws_connect(self.url, origin=self._origin)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            self._set_state(ChannelState.ERRORED)
            logger.error(
                "Channel connect failed for session %s: %s", self._session.id, exc,
            )
            raise ConnectError(
                self._session.channel_endpoint, str(exc) or type(exc).__name__,
            ) from exc
        self._set_state(ChannelState.OPEN)
        logger.info("Channel open for session %s", self._session.id)
        return self

    async def send(self, payload: dict[str, Any]) -> None:
        """Send one JSON frame. Raises NotConnectedError unless OPEN."""
        if self._state != ChannelState.OPEN or self._ws is None:
            raise NotConnectedError(self._state.value)
        text = json.dumps(payload)
        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            logger.error("Channel send failed for session %s: %s", self._session.id, exc)
            # A concurrent close() or remote close may already have moved us on.
            if self._state == ChannelState.OPEN:
                self._set_state(ChannelState.ERRORED)
            raise NotConnectedError(self._state.value) from exc
        logger.debug("Sent %s frame", payload.get("type", "?"))

    async def frames(self) -> AsyncIterator[str]:
        """Yield raw inbound text frames in arrival order until the channel ends."""
        if self._ws is None:
            raise NotConnectedError(self._state.value)
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield msg.data.decode("utf-8", errors="replace")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(
                    "Channel error for session %s: %s",
                    self._session.id, self._ws.exception(),
                )
                if self._state == ChannelState.OPEN:
                    self._set_state(ChannelState.ERRORED)
                return
        if self._state == ChannelState.OPEN:
            logger.info(
                "Channel closed by remote for session %s (code=%s)",
                self._session.id, self._ws.close_code,
            )
            self._set_state(ChannelState.CLOSED)

    async def close(self) -> None:
        """Close the channel. No-op unless OPEN."""
        if self._state != ChannelState.OPEN or self._ws is None:
            return
        self._set_state(ChannelState.CLOSING)
        try:
            await self._ws.close()
        finally:
            self._set_state(ChannelState.CLOSED)
            logger.info("Channel closed for session %s", self._session.id)

    async def __aenter__(self) -> Channel:
        if self._state == ChannelState.CONNECTING:
            await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


async def open_channel(
    http: aiohttp.ClientSession,
    session: Session,
    *,
    origin: str,
    credential: str | None = None,
) -> Channel:
    """Create and open a Channel for *session*."""
    channel = Channel(http, session, origin=origin, credential=credential)
    return await channel.open()
