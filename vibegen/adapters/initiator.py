"""Session creation over the chunked HTTP call.

POST /api/agent answers with newline-delimited JSON. The first object
carrying a session id and channel URL identifies the session; later
``{"chunk": ...}`` objects carry plan text and are handed to the
caller one by one as they arrive. A bare ``terminate`` line ends the
stream.

Flow:
    create_session() → validate → POST → LineBuffer → SessionCreated, PlanChunk...
"""
from __future__ import annotations

import asyncio
import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import aiohttp

from vibegen.adapters.events import (
    CreationFrame,
    PlanChunk,
    SessionCreated,
    session_from_payload,
)
from vibegen.engine.config import ClientConfig
from vibegen.engine.errors import (
    FrameParseError,
    InvalidBuildRequestError,
    TransportError,
)
from vibegen.engine.models import AgentMode, BuildRequest, ImageAttachment, Session

logger = logging.getLogger(__name__)

TERMINATE_SENTINEL = "terminate"


class LineBuffer:
    """Reassembles text lines from byte chunks split at arbitrary points.

    Holds back the unterminated tail of each read (including partial
    UTF-8 sequences) until the next read or ``flush()``.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._carry = ""

    def feed(self, chunk: bytes) -> list[str]:
        text = self._carry + self._decoder.decode(chunk)
        *lines, self._carry = text.split("\n")
        return lines

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        text = self._carry + self._decoder.decode(b"", final=True)
        self._carry = ""
        return [text] if text else []


async def _iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    buffer = LineBuffer()
    async for chunk in chunks:
        for line in buffer.feed(chunk):
            yield line
    for line in buffer.flush():
        yield line


async def iter_creation_frames(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[CreationFrame]:
    """Turn the raw creation body into SessionCreated / PlanChunk frames.

    Unparseable lines are logged and skipped. Iteration stops at the
    ``terminate`` sentinel or at end of stream, whichever comes first.
    """
    session: Session | None = None
    async for raw_line in _iter_lines(chunks):
        line = raw_line.strip()
        if not line:
            continue
        # The sentinel is not JSON; check it before parsing.
        if line == TERMINATE_SENTINEL:
            logger.debug("Creation stream terminated by server")
            return
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("%s", FrameParseError(line, exc.msg))
            continue
        if not isinstance(data, dict):
            logger.warning("%s", FrameParseError(line, "not a JSON object"))
            continue

        if session is None:
            session = session_from_payload(data)
            if session is not None:
                logger.info(
                    "Session created: %s (template=%s, channel=%s)",
                    session.id, session.template_name or "?", session.channel_endpoint,
                )
                yield SessionCreated(session)
                continue

        chunk = data.get("chunk")
        if isinstance(chunk, str):
            if chunk:
                yield PlanChunk(chunk)
        else:
            logger.debug("Ignoring creation object with keys: %s", sorted(data))


class SessionInitiator:
    """Talks to the HTTP side of the generation service."""

    def __init__(self, http: aiohttp.ClientSession, config: ClientConfig) -> None:
        self._http = http
        self._config = config

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.auth_token:
            headers["Authorization"] = f"Bearer {self._config.auth_token}"
        return headers

    def build_payload(self, request: BuildRequest) -> dict[str, Any]:
        """Validate *request* and produce the wire body, filling defaults."""
        if not isinstance(request.query, str) or not request.query.strip():
            raise InvalidBuildRequestError("query must be a non-empty string")
        for image in request.images:
            if not isinstance(image, ImageAttachment):
                raise InvalidBuildRequestError(
                    f"images must be ImageAttachment instances, got {type(image).__name__}"
                )
        try:
            mode = AgentMode(request.agent_mode or self._config.default_agent_mode)
        except ValueError as exc:
            raise InvalidBuildRequestError(str(exc)) from exc
        payload: dict[str, Any] = {
            "query": request.query,
            "language": request.language or self._config.default_language,
            "frameworks": list(
                request.frameworks
                if request.frameworks is not None
                else self._config.default_frameworks
            ),
            "selectedTemplate": (
                request.selected_template or self._config.default_template
            ),
            "agentMode": mode.value,
        }
        if request.images:
            payload["images"] = [image.to_wire() for image in request.images]
        return payload

    def create_session(self, request: BuildRequest) -> AsyncIterator[CreationFrame]:
        """Start a build session.

        Validation happens here, before anything touches the network.
        The returned async iterator yields SessionCreated first, then
        PlanChunk items as they stream in. Raises TransportError during
        iteration on network/HTTP failure or if the stream ends without
        identifying a session.
        """
        payload = self.build_payload(request)
        return self._stream(payload)

    async def _stream(self, payload: dict[str, Any]) -> AsyncIterator[CreationFrame]:
        url = self._config.api_url("/api/agent")
        logger.info("Creating session via %s", url)
        seen_session = False
        try:
            async with self._http.post(
                url, json=payload, headers=self._headers(),
            ) as resp:
                if resp.status >= 400:
                    detail = await resp.text()
                    logger.error("Session creation failed: HTTP %d", resp.status)
                    raise TransportError(detail, status=resp.status)
                async for frame in iter_creation_frames(resp.content.iter_any()):
                    if isinstance(frame, SessionCreated):
                        seen_session = True
                    yield frame
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Session creation transport failure: %s", exc)
            raise TransportError(str(exc) or type(exc).__name__) from exc
        if not seen_session:
            raise TransportError("creation stream ended without a session id")

    async def connect_existing(self, session_id: str) -> Session:
        """Look up the channel endpoint for a session created earlier."""
        if not session_id:
            raise InvalidBuildRequestError("session_id must be non-empty")
        url = self._config.api_url(f"/api/agent/{session_id}/connect")
        try:
            async with self._http.get(url, headers=self._headers()) as resp:
                if resp.status >= 400:
                    raise TransportError(await resp.text(), status=resp.status)
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc

        data = body.get("data") if isinstance(body, dict) and "data" in body else body
        session = session_from_payload(data) if isinstance(data, dict) else None
        if session is None:
            raise TransportError(f"unexpected connect response for {session_id}")
        logger.info("Reattached to session %s", session.id)
        return session

    async def check_health(self) -> dict[str, Any]:
        """GET /api/health and return its JSON body."""
        url = self._config.api_url("/api/health")
        try:
            async with self._http.get(url) as resp:
                if resp.status >= 400:
                    raise TransportError(await resp.text(), status=resp.status)
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc
        return body if isinstance(body, dict) else {"status": body}
