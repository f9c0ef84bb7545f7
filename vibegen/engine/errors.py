"""Exception hierarchy for the generation-session client.

One class per failure mode. Parse errors are built, logged and
dropped by the stream readers; everything else reaches the caller.
"""
from __future__ import annotations


class GenerationClientError(Exception):
    """Base exception for all generation client errors."""


class InvalidBuildRequestError(GenerationClientError, ValueError):
    """The build request failed validation before any network call."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid build request: {reason}")


class TransportError(GenerationClientError):
    """The HTTP call failed at the network or status level."""
    def __init__(self, detail: str, status: int | None = None):
        self.detail = detail
        self.status = status
        if status is not None:
            super().__init__(f"HTTP {status}: {detail}")
        else:
            super().__init__(f"Transport failure: {detail}")


class FrameParseError(GenerationClientError):
    """A line of the creation stream was not valid JSON."""
    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"Unparseable stream line ({reason}): {line[:120]!r}")


class MessageParseError(GenerationClientError):
    """A channel frame was not a JSON object."""
    def __init__(self, raw: str, reason: str):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Unparseable channel frame ({reason}): {raw[:120]!r}")


class ConnectError(GenerationClientError):
    """The persistent channel could not be established."""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Cannot open channel to {url}: {reason}")


class NotConnectedError(GenerationClientError):
    """A send was attempted while the channel is not open."""
    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Channel is not open (state: {state})")


class ArtifactWriteError(GenerationClientError):
    """A generated file could not be written to local storage."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot write artifact {path!r}: {reason}")


class PathEscapeError(ArtifactWriteError):
    """A relative path tried to leave the session root."""
    def __init__(self, path: str):
        super().__init__(path, "path escapes the session root")


class InvalidPhaseTransitionError(GenerationClientError, ValueError):
    """A phase frame tried to move a phase backwards or out of failed."""
    def __init__(self, number: int, current: str, target: str):
        self.number = number
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid transition for phase {number}: {current} -> {target}"
        )
