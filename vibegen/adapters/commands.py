"""Outbound commands for the session channel.

Encoding is pure: each builder returns the wire dict for one command.
The protocol has no request ids, so nothing here waits for a reply;
the effect of a command shows up later as ordinary inbound frames
(e.g. ``deploy_preview`` → deployment_started/completed frames).
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol

from vibegen.engine.models import ImageAttachment

logger = logging.getLogger(__name__)


class CommandType(str, Enum):
    START_GENERATION = "generate_all"
    USER_MESSAGE = "user_suggestion"
    STOP_GENERATION = "stop_generation"
    RESUME_GENERATION = "resume_generation"
    DEPLOY_PRODUCTION = "deploy"
    DEPLOY_PREVIEW = "preview"
    CAPTURE_SCREENSHOT = "capture_screenshot"
    FETCH_CONVERSATION_STATE = "get_conversation_state"
    CLEAR_CONVERSATION = "clear_conversation"
    FETCH_MODEL_CONFIGS = "get_model_configs"


def encode_command(command: CommandType, **fields: Any) -> dict[str, Any]:
    """Build the wire dict for *command*; ``None`` fields are omitted."""
    frame: dict[str, Any] = {"type": CommandType(command).value}
    frame.update({k: v for k, v in fields.items() if v is not None})
    return frame


def encode_user_message(
    text: str, attachments: list[ImageAttachment] | None = None,
) -> dict[str, Any]:
    if not text or not text.strip():
        raise ValueError("user message text must be non-empty")
    images = [a.to_wire() for a in attachments] if attachments else None
    return encode_command(CommandType.USER_MESSAGE, message=text, images=images)


def encode_capture_screenshot(
    url: str, viewport: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if not url:
        raise ValueError("screenshot url must be non-empty")
    data: dict[str, Any] = {"url": url}
    if viewport is not None:
        data["viewport"] = viewport
    return encode_command(CommandType.CAPTURE_SCREENSHOT, data=data)


class FrameSink(Protocol):
    async def send(self, payload: dict[str, Any]) -> None: ...


class CommandSender:
    """Fire-and-forget command methods over a channel.

    Every method raises NotConnectedError (from the channel) if the
    channel is not open; none of them waits for a response.
    """

    def __init__(self, channel: FrameSink) -> None:
        self._channel = channel

    async def _send(self, frame: dict[str, Any]) -> None:
        logger.debug("Command %s", frame["type"])
        await self._channel.send(frame)

    async def start_generation(self) -> None:
        await self._send(encode_command(CommandType.START_GENERATION))

    async def user_message(
        self, text: str, attachments: list[ImageAttachment] | None = None,
    ) -> None:
        await self._send(encode_user_message(text, attachments))

    async def stop_generation(self) -> None:
        """Ask the server to stop. Advisory: the server decides when."""
        await self._send(encode_command(CommandType.STOP_GENERATION))

    async def resume_generation(self) -> None:
        await self._send(encode_command(CommandType.RESUME_GENERATION))

    async def deploy_production(self) -> None:
        await self._send(encode_command(CommandType.DEPLOY_PRODUCTION))

    async def deploy_preview(self) -> None:
        await self._send(encode_command(CommandType.DEPLOY_PREVIEW))

    async def capture_screenshot(
        self, url: str, viewport: dict[str, Any] | None = None,
    ) -> None:
        await self._send(encode_capture_screenshot(url, viewport))

    async def fetch_conversation_state(self) -> None:
        await self._send(encode_command(CommandType.FETCH_CONVERSATION_STATE))

    async def clear_conversation(self) -> None:
        await self._send(encode_command(CommandType.CLEAR_CONVERSATION))

    async def fetch_model_configs(self) -> None:
        await self._send(encode_command(CommandType.FETCH_MODEL_CONFIGS))
