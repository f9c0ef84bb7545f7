from __future__ import annotations

import pytest

from vibegen.adapters.channel import Channel
from vibegen.adapters.commands import (
    CommandSender,
    CommandType,
    encode_capture_screenshot,
    encode_command,
    encode_user_message,
)
from vibegen.engine.errors import NotConnectedError
from vibegen.engine.lifecycle import ChannelState
from vibegen.engine.models import ImageAttachment, Session


class _Sink:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send(self, payload: dict) -> None:
        self.sent.append(payload)


def test_encode_command_drops_none_fields() -> None:
    assert encode_command(CommandType.DEPLOY_PREVIEW, extra=None) == {"type": "preview"}


def test_encode_user_message_with_attachments() -> None:
    image = ImageAttachment(data="AAAA", mime_type="image/png", filename="s.png", size=3)
    assert encode_user_message("make it blue", [image]) == {
        "type": "user_suggestion",
        "message": "make it blue",
        "images": [{"data": "AAAA", "mimeType": "image/png", "filename": "s.png", "size": 3}],
    }
    assert encode_user_message("plain") == {"type": "user_suggestion", "message": "plain"}


@pytest.mark.parametrize("text", ["", "  \n"])
def test_encode_user_message_rejects_empty(text: str) -> None:
    with pytest.raises(ValueError):
        encode_user_message(text)


def test_encode_capture_screenshot() -> None:
    assert encode_capture_screenshot("https://p.example", {"width": 1280, "height": 720}) == {
        "type": "capture_screenshot",
        "data": {"url": "https://p.example", "viewport": {"width": 1280, "height": 720}},
    }
    with pytest.raises(ValueError):
        encode_capture_screenshot("")


@pytest.mark.asyncio
async def test_sender_emits_wire_types_in_order() -> None:
    sink = _Sink()
    sender = CommandSender(sink)

    await sender.start_generation()
    await sender.user_message("add login")
    await sender.stop_generation()
    await sender.resume_generation()
    await sender.deploy_preview()
    await sender.deploy_production()
    await sender.capture_screenshot("https://p.example")
    await sender.fetch_conversation_state()
    await sender.clear_conversation()
    await sender.fetch_model_configs()

    assert [f["type"] for f in sink.sent] == [
        "generate_all",
        "user_suggestion",
        "stop_generation",
        "resume_generation",
        "preview",
        "deploy",
        "capture_screenshot",
        "get_conversation_state",
        "clear_conversation",
        "get_model_configs",
    ]


@pytest.mark.asyncio
async def test_unopened_channel_rejects_commands() -> None:
    channel = Channel(None, Session(id="s", channel_endpoint="ws://x/ws"), origin="http://x")
    assert channel.state == ChannelState.CONNECTING
    with pytest.raises(NotConnectedError):
        await CommandSender(channel).deploy_preview()
    # close() before open is a no-op
    await channel.close()
    assert channel.state == ChannelState.CONNECTING


def test_channel_url_carries_token() -> None:
    session = Session(id="s", channel_endpoint="wss://host/api/agent/s/ws")
    assert Channel(None, session, origin="https://host").url == "wss://host/api/agent/s/ws"
    assert (
        Channel(None, session, origin="https://host", credential="t0k").url
        == "wss://host/api/agent/s/ws?token=t0k"
    )


class _ClosingWebSocket:
    """Moves the channel on to *target* mid-send, then fails the send."""

    def __init__(self, channel: Channel, target: ChannelState) -> None:
        self._channel = channel
        self._target = target

    async def send_str(self, text: str) -> None:
        self._channel._set_state(self._target)
        raise ConnectionResetError("Cannot write to closing transport")


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [ChannelState.CLOSING, ChannelState.CLOSED])
async def test_send_failing_after_concurrent_close_raises_not_connected(target) -> None:
    channel = Channel(None, Session(id="s", channel_endpoint="ws://x/ws"), origin="http://x")
    channel._ws = _ClosingWebSocket(channel, target)
    channel._set_state(ChannelState.OPEN)

    with pytest.raises(NotConnectedError):
        await CommandSender(channel).start_generation()
    assert channel.state == target


@pytest.mark.asyncio
async def test_send_failure_on_open_channel_marks_errored() -> None:
    class _FailingWebSocket:
        async def send_str(self, text: str) -> None:
            raise ConnectionResetError("reset")

    channel = Channel(None, Session(id="s", channel_endpoint="ws://x/ws"), origin="http://x")
    channel._ws = _FailingWebSocket()
    channel._set_state(ChannelState.OPEN)

    with pytest.raises(NotConnectedError):
        await channel.send({"type": "deploy"})
    assert channel.state == ChannelState.ERRORED
