"""Frame types received from the generation service.

Each wire object is parsed into a typed dataclass keyed by its
``type`` discriminant. The set of frame classes is closed; anything
unrecognized becomes an UnknownFrame so new server message kinds pass
through harmlessly.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from vibegen.engine.errors import MessageParseError
from vibegen.engine.models import (
    ConversationEntry,
    ErrorKind,
    GenerationStatus,
    Lineage,
    Phase,
    PhaseStatus,
    Session,
    ToolInvocation,
    parse_timestamp,
)


class FrameKind(str, Enum):
    CONNECTION_SYNC = "connection_sync"
    LIFECYCLE = "lifecycle"
    PHASE_PROGRESS = "phase_progress"
    FILE_PROGRESS = "file_progress"
    DEPLOYMENT_PREVIEW = "deployment_preview"
    DEPLOYMENT_PRODUCTION = "deployment_production"
    CONVERSATION = "conversation"
    ERROR = "error"
    UNKNOWN = "unknown"


class FileStage(str, Enum):
    GENERATING = "generating"
    CHUNK = "chunk"
    GENERATED = "generated"


class ChunkMode(str, Enum):
    APPEND = "append"
    OVERWRITE = "overwrite"


class DeploymentStage(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


# Ordered URL fallback chains; the first non-empty field wins.
PREVIEW_URL_FIELDS: tuple[str, ...] = ("deployedUrl", "previewURL", "previewUrl")
PRODUCTION_URL_FIELDS: tuple[str, ...] = ("deploymentUrl", "workersUrl")


def first_non_empty(data: dict[str, Any], fields: tuple[str, ...]) -> str | None:
    for name in fields:
        value = data.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _opt_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


# ── Creation stream frames ───────────────────────────────────────


@dataclass
class CreationFrame:
    """Base for objects yielded while a session is being created."""


@dataclass
class SessionCreated(CreationFrame):
    session: Session


@dataclass
class PlanChunk(CreationFrame):
    text: str


def session_from_payload(data: dict[str, Any]) -> Session | None:
    """Build a Session from the identity frame, or None if fields are missing."""
    session_id = data.get("sessionId") or data.get("agentId")
    endpoint = data.get("channelUrl") or data.get("websocketUrl")
    if not isinstance(session_id, str) or not isinstance(endpoint, str):
        return None
    if not session_id or not endpoint:
        return None
    template = data.get("template") if isinstance(data.get("template"), dict) else {}
    files = template.get("files") if isinstance(template.get("files"), list) else []
    return Session(
        id=session_id,
        channel_endpoint=endpoint,
        template_name=_opt_str(template.get("name")) or "",
        important_files=tuple(f for f in files if isinstance(f, str)),
        status_url=_opt_str(data.get("statusUrl") or data.get("httpStatusUrl")),
        message=_opt_str(data.get("message")) or "",
    )


# ── Channel frames ───────────────────────────────────────────────


@dataclass
class InboundFrame:
    """Base frame from the persistent channel."""
    type: str = ""
    kind: FrameKind = FrameKind.UNKNOWN
    timestamp: datetime | None = None
    payload: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class SnapshotFile:
    path: str
    contents: str
    purpose: str | None = None
    hash: str | None = None


@dataclass
class StateSnapshot:
    """Full remote state carried by a connection-sync frame."""
    files: list[SnapshotFile] = field(default_factory=list)
    phases: list[Phase] = field(default_factory=list)
    current_phase: int = 0
    phases_counter: int = 0
    conversation: list[ConversationEntry] = field(default_factory=list)
    project_name: str = ""
    template_name: str = ""
    dev_state: str = ""
    should_be_generating: bool = False
    mvp_generated: bool = False

    @classmethod
    def from_wire(cls, state: dict[str, Any]) -> StateSnapshot:
        files: list[SnapshotFile] = []
        files_map = state.get("generatedFilesMap") or {}
        if isinstance(files_map, dict):
            for key, entry in files_map.items():
                if not isinstance(entry, dict):
                    continue
                contents = entry.get("fileContents")
                if not isinstance(contents, str):
                    continue
                files.append(SnapshotFile(
                    path=_opt_str(entry.get("filePath")) or key,
                    contents=contents,
                    purpose=_opt_str(entry.get("filePurpose")),
                    hash=_opt_str(entry.get("hash")),
                ))

        phases: list[Phase] = []
        raw_phases = state.get("generatedPhases") or []
        if isinstance(raw_phases, list):
            for index, entry in enumerate(raw_phases, start=1):
                if not isinstance(entry, dict):
                    continue
                completed = bool(entry.get("completed"))
                phases.append(Phase(
                    number=index,
                    name=_opt_str(entry.get("name")) or "",
                    status=(
                        PhaseStatus.IMPLEMENTED if completed
                        else PhaseStatus.GENERATED
                    ),
                ))

        raw_messages = state.get("conversationMessages") or []
        conversation = [
            ConversationEntry.from_wire(m)
            for m in raw_messages if isinstance(m, dict)
        ] if isinstance(raw_messages, list) else []

        return cls(
            files=files,
            phases=phases,
            current_phase=_opt_int(state.get("currentPhase")) or 0,
            phases_counter=_opt_int(state.get("phasesCounter")) or 0,
            conversation=conversation,
            project_name=_opt_str(state.get("projectName")) or "",
            template_name=_opt_str(state.get("templateName")) or "",
            dev_state=_opt_str(state.get("currentDevState")) or "",
            should_be_generating=bool(state.get("shouldBeGenerating")),
            mvp_generated=bool(state.get("mvpGenerated")),
        )


@dataclass
class ConnectionSync(InboundFrame):
    kind: FrameKind = FrameKind.CONNECTION_SYNC
    snapshot: StateSnapshot = field(default_factory=StateSnapshot)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ConnectionSync:
        state = data.get("state")
        return cls(
            snapshot=StateSnapshot.from_wire(state if isinstance(state, dict) else {}),
        )


_LIFECYCLE_STATUS: dict[str, GenerationStatus] = {
    "generation_started": GenerationStatus.GENERATING,
    "generation_complete": GenerationStatus.COMPLETE,
    "generation_stopped": GenerationStatus.STOPPED,
    "generation_resumed": GenerationStatus.GENERATING,
}


@dataclass
class LifecycleFrame(InboundFrame):
    kind: FrameKind = FrameKind.LIFECYCLE
    status: GenerationStatus = GenerationStatus.IDLE
    message: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> LifecycleFrame:
        return cls(
            status=_LIFECYCLE_STATUS[data["type"]],
            message=_opt_str(data.get("message")) or "",
        )


@dataclass
class PhaseProgress(InboundFrame):
    kind: FrameKind = FrameKind.PHASE_PROGRESS
    status: PhaseStatus = PhaseStatus.PLANNED
    number: int | None = None
    name: str = ""
    message: str = ""
    files_count: int | None = None
    fix_count: int | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> PhaseProgress:
        phase = data.get("phase") if isinstance(data.get("phase"), dict) else {}
        number = _opt_int(data.get("phaseNumber"))
        if number is None:
            number = _opt_int(phase.get("phaseNumber") or phase.get("number"))
        return cls(
            status=PhaseStatus(data["type"].removeprefix("phase_")),
            number=number,
            name=_opt_str(data.get("phaseName")) or _opt_str(phase.get("name")) or "",
            message=_opt_str(data.get("message")) or "",
            files_count=_opt_int(data.get("filesCount")),
            fix_count=_opt_int(data.get("fixCount")),
        )


_FILE_STAGES: dict[str, FileStage] = {
    "file_generating": FileStage.GENERATING,
    "file_chunk_generated": FileStage.CHUNK,
    "file_generated": FileStage.GENERATED,
}


@dataclass
class FileProgress(InboundFrame):
    kind: FrameKind = FrameKind.FILE_PROGRESS
    stage: FileStage = FileStage.GENERATING
    path: str | None = None
    purpose: str | None = None
    chunk: str = ""
    contents: str | None = None
    size: int | None = None
    mode: ChunkMode = ChunkMode.APPEND

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> FileProgress:
        stage = _FILE_STAGES[data["type"]]
        path = _opt_str(data.get("filePath"))
        purpose = _opt_str(data.get("filePurpose"))
        contents = _opt_str(data.get("fileContents"))
        inline = data.get("file")
        if stage == FileStage.GENERATED and isinstance(inline, dict):
            path = _opt_str(inline.get("filePath")) or path
            purpose = _opt_str(inline.get("filePurpose")) or purpose
            inline_contents = _opt_str(inline.get("fileContents"))
            if inline_contents is not None:
                contents = inline_contents
        return cls(
            stage=stage,
            path=path,
            purpose=purpose,
            chunk=_opt_str(data.get("chunk")) or "",
            contents=contents,
            size=_opt_int(data.get("size")),
            mode=(
                ChunkMode.OVERWRITE if data.get("mode") == ChunkMode.OVERWRITE.value
                else ChunkMode.APPEND
            ),
        )


_PREVIEW_STAGES: dict[str, DeploymentStage] = {
    "deployment_started": DeploymentStage.STARTED,
    "deployment_completed": DeploymentStage.COMPLETED,
    "deployment_failed": DeploymentStage.FAILED,
}

_PRODUCTION_STAGES: dict[str, DeploymentStage] = {
    "cloudflare_deployment_started": DeploymentStage.STARTED,
    "cloudflare_deployment_completed": DeploymentStage.COMPLETED,
    "cloudflare_deployment_error": DeploymentStage.FAILED,
}


@dataclass
class DeploymentFrame(InboundFrame):
    lineage: Lineage = Lineage.PREVIEW
    stage: DeploymentStage = DeploymentStage.STARTED
    identity: str | None = None
    url: str | None = None
    files_deployed: int | None = None
    run_id: str | None = None
    error: str | None = None
    message: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> DeploymentFrame:
        type_ = data["type"]
        if type_ in _PRODUCTION_STAGES:
            lineage = Lineage.PRODUCTION
            stage = _PRODUCTION_STAGES[type_]
            identity = _opt_str(data.get("instanceId"))
            url_fields = PRODUCTION_URL_FIELDS
            kind = FrameKind.DEPLOYMENT_PRODUCTION
        else:
            lineage = Lineage.PREVIEW
            stage = _PREVIEW_STAGES[type_]
            identity = _opt_str(data.get("subdomain")) or _opt_str(data.get("runId"))
            url_fields = PREVIEW_URL_FIELDS
            kind = FrameKind.DEPLOYMENT_PREVIEW
        message = _opt_str(data.get("message")) or ""
        error = None
        if stage == DeploymentStage.FAILED:
            error = _opt_str(data.get("error")) or message or "deployment failed"
        return cls(
            kind=kind,
            lineage=lineage,
            stage=stage,
            identity=identity or None,
            url=first_non_empty(data, url_fields) if stage == DeploymentStage.COMPLETED else None,
            files_deployed=_opt_int(data.get("filesDeployed")),
            run_id=_opt_str(data.get("runId")),
            error=error,
            message=message,
        )


@dataclass
class ConversationFrame(InboundFrame):
    """Either one assistant response or a replacement conversation list."""
    kind: FrameKind = FrameKind.CONVERSATION
    message: str | None = None
    conversation_id: str | None = None
    is_streaming: bool = False
    tool: ToolInvocation | None = None
    messages: list[ConversationEntry] | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ConversationFrame:
        if data["type"] == "conversation_state":
            raw = data.get("messages")
            if not isinstance(raw, list):
                state = data.get("state") if isinstance(data.get("state"), dict) else {}
                raw = state.get("messages") if isinstance(state.get("messages"), list) else []
            return cls(
                messages=[ConversationEntry.from_wire(m) for m in raw if isinstance(m, dict)],
            )
        tool = None
        raw_tool = data.get("tool")
        if isinstance(raw_tool, dict) and isinstance(raw_tool.get("name"), str):
            tool = ToolInvocation(
                name=raw_tool["name"],
                status=_opt_str(raw_tool.get("status")) or "start",
                result=_opt_str(raw_tool.get("result")),
            )
        return cls(
            message=_opt_str(data.get("message")),
            conversation_id=_opt_str(data.get("conversationId")),
            is_streaming=bool(data.get("isStreaming")),
            tool=tool,
        )


@dataclass
class ErrorFrame(InboundFrame):
    kind: FrameKind = FrameKind.ERROR
    error_kind: ErrorKind = ErrorKind.GENERAL
    message: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ErrorFrame:
        return cls(
            error_kind=(
                ErrorKind.RATE_LIMIT if data["type"] == "rate_limit_error"
                else ErrorKind.GENERAL
            ),
            message=(
                _opt_str(data.get("error")) or _opt_str(data.get("message"))
                or "unknown error"
            ),
        )


@dataclass
class UnknownFrame(InboundFrame):
    kind: FrameKind = FrameKind.UNKNOWN


# Map of wire type strings to frame constructors
_FRAME_MAP: dict[str, type[InboundFrame]] = {
    "agent_connected": ConnectionSync,
    **{t: LifecycleFrame for t in _LIFECYCLE_STATUS},
    **{f"phase_{s.value}": PhaseProgress for s in PhaseStatus if s != PhaseStatus.PLANNED},
    **{t: FileProgress for t in _FILE_STAGES},
    **{t: DeploymentFrame for t in _PREVIEW_STAGES},
    **{t: DeploymentFrame for t in _PRODUCTION_STAGES},
    "conversation_response": ConversationFrame,
    "conversation_state": ConversationFrame,
    "error": ErrorFrame,
    "rate_limit_error": ErrorFrame,
}


def classify(type_: str) -> FrameKind:
    """Return the frame family for a wire ``type`` value."""
    if type_ in _PREVIEW_STAGES:
        return FrameKind.DEPLOYMENT_PREVIEW
    if type_ in _PRODUCTION_STAGES:
        return FrameKind.DEPLOYMENT_PRODUCTION
    cls = _FRAME_MAP.get(type_)
    if cls is None:
        return FrameKind.UNKNOWN
    return cls.__dataclass_fields__["kind"].default


def dict_to_frame(data: dict[str, Any]) -> InboundFrame:
    """Convert a decoded wire object to a typed frame.

    Never raises for unknown or missing ``type``; those become
    UnknownFrame. Raises MessageParseError if a known frame carries
    values that cannot be interpreted.
    """
    type_ = data.get("type")
    timestamp = parse_timestamp(data.get("timestamp"))
    if not isinstance(type_, str) or type_ not in _FRAME_MAP:
        return UnknownFrame(
            type=type_ if isinstance(type_, str) else "",
            timestamp=timestamp,
            payload=data,
        )
    cls = _FRAME_MAP[type_]
    try:
        frame = cls.from_payload(data)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise MessageParseError(json.dumps(data, default=str), str(exc)) from exc
    frame.type = type_
    frame.timestamp = timestamp
    frame.payload = data
    return frame


def decode_frame(raw: str | bytes) -> InboundFrame:
    """Parse one channel message. Raises MessageParseError if malformed."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MessageParseError(repr(raw[:120]), "invalid utf-8") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MessageParseError(raw, exc.msg) from exc
    if not isinstance(data, dict):
        raise MessageParseError(raw, "frame is not a JSON object")
    return dict_to_frame(data)
