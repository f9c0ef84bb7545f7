"""Core data models for the generation-session client.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class AgentMode(str, Enum):
    DETERMINISTIC = "deterministic"
    SMART = "smart"


class PhaseStatus(str, Enum):
    """Phase lifecycle states. See lifecycle.py for transition rules."""
    PLANNED = "planned"
    GENERATING = "generating"
    GENERATED = "generated"
    IMPLEMENTING = "implementing"
    IMPLEMENTED = "implemented"
    VALIDATING = "validating"
    VALIDATED = "validated"
    FAILED = "failed"


class GenerationStatus(str, Enum):
    """Overall generation state as reported by lifecycle frames."""
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETE = "complete"
    STOPPED = "stopped"


class Lineage(str, Enum):
    """The two independent deployment event families."""
    PREVIEW = "preview"
    PRODUCTION = "production"


class DeploymentStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class ConversationRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ErrorKind(str, Enum):
    GENERAL = "general"
    RATE_LIMIT = "rate_limit"


class NoticeKind(str, Enum):
    """Categories of conditions surfaced to the caller."""
    REMOTE_ERROR = "remote_error"
    RATE_LIMIT = "rate_limit"
    DEPLOYMENT_FAILED = "deployment_failed"
    WRITE_FAILED = "write_failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Convert a wire timestamp (epoch millis or ISO string) to UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


@dataclass
class ImageAttachment:
    """An image sent with a build request or a user message."""
    data: str  # base64
    mime_type: str
    filename: str
    size: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "mimeType": self.mime_type,
            "filename": self.filename,
            "size": self.size,
        }


@dataclass
class BuildRequest:
    """Input to the session creation call.

    Only ``query`` is mandatory. Unset optional fields are filled from
    ClientConfig defaults by the initiator.
    """
    query: str
    language: str | None = None
    frameworks: list[str] | None = None
    selected_template: str | None = None
    agent_mode: AgentMode | None = None
    images: list[ImageAttachment] = field(default_factory=list)


@dataclass(frozen=True)
class Session:
    """A build session. Immutable once created."""
    id: str
    channel_endpoint: str
    template_name: str = ""
    important_files: tuple[str, ...] = ()
    status_url: str | None = None
    message: str = ""


@dataclass
class FileArtifact:
    """A file materialized under the session root."""
    path: str
    contents: str
    purpose: str | None = None
    size: int = 0
    hash: str | None = None
    last_write_time: datetime = field(default_factory=_utcnow)


@dataclass
class Phase:
    number: int
    name: str = ""
    status: PhaseStatus = PhaseStatus.PLANNED
    files_count: int | None = None
    fix_count: int | None = None


@dataclass
class DeploymentRecord:
    """One deployment within a lineage.

    ``identity`` is the subdomain (preview) or instance id
    (production) and is never reassigned after creation.
    """
    lineage: Lineage
    identity: str
    status: DeploymentStatus = DeploymentStatus.STARTED
    url: str | None = None
    files_deployed: int | None = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    error: str | None = None
    message: str = ""

    @property
    def url_available(self) -> bool:
        return self.status == DeploymentStatus.COMPLETED and bool(self.url)


@dataclass
class ToolInvocation:
    """Tool metadata attached to an assistant conversation entry."""
    name: str
    status: str  # "start", "success", "error"
    result: str | None = None


@dataclass
class ConversationEntry:
    role: ConversationRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    conversation_id: str | None = None
    tools: list[ToolInvocation] = field(default_factory=list)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> ConversationEntry:
        try:
            role = ConversationRole(data.get("role", "assistant"))
        except ValueError:
            role = ConversationRole.SYSTEM
        content = data.get("content")
        return cls(
            role=role,
            content=content if isinstance(content, str) else "",
            timestamp=parse_timestamp(data.get("timestamp")) or _utcnow(),
            conversation_id=data.get("conversationId"),
        )


@dataclass
class ErrorEvent:
    """A server-reported error. Transient: shown, never stored."""
    kind: ErrorKind
    message: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class Notice:
    """A condition surfaced to the caller without closing the channel."""
    kind: NoticeKind
    message: str
    timestamp: datetime = field(default_factory=_utcnow)
    error: ErrorEvent | None = None
    lineage: Lineage | None = None
    path: str | None = None
