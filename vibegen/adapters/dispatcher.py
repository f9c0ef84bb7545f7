"""Inbound frame dispatch and local session-state reconciliation.

Consumes every channel frame in arrival order, keeps a local mirror
of the remote session (files, phases, deployments, conversation) and
writes completed files through the ArtifactMaterializer. Parse
failures, write failures and server-side errors never stop the loop;
they are logged and, where the caller should know, surfaced as
Notices.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

from vibegen.adapters.events import (
    ChunkMode,
    ConnectionSync,
    ConversationFrame,
    DeploymentFrame,
    DeploymentStage,
    ErrorFrame,
    FileProgress,
    FileStage,
    InboundFrame,
    LifecycleFrame,
    PhaseProgress,
    decode_frame,
)
from vibegen.engine.config import ObserverCallback, fire_callback
from vibegen.engine.errors import (
    ArtifactWriteError,
    InvalidPhaseTransitionError,
    MessageParseError,
)
from vibegen.engine.lifecycle import validate_phase_transition
from vibegen.engine.models import (
    ConversationEntry,
    ConversationRole,
    DeploymentRecord,
    DeploymentStatus,
    ErrorEvent,
    ErrorKind,
    FileArtifact,
    GenerationStatus,
    Lineage,
    Notice,
    NoticeKind,
    Phase,
    PhaseStatus,
    Session,
)

if TYPE_CHECKING:
    from vibegen.adapters.channel import Channel

logger = logging.getLogger(__name__)


class Materializer(Protocol):
    def materialize(
        self,
        session_id: str,
        relative_path: str,
        contents: str,
        *,
        purpose: str | None = None,
    ) -> FileArtifact: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionState:
    """Local mirror of one session's remote state."""
    session_id: str
    files: dict[str, FileArtifact] = field(default_factory=dict)
    phases: dict[int, Phase] = field(default_factory=dict)
    current_phase: int = 0
    phases_counter: int = 0
    conversation: list[ConversationEntry] = field(default_factory=list)
    deployments: dict[tuple[Lineage, str], DeploymentRecord] = field(default_factory=dict)
    # Most recently started record per lineage
    active_deployments: dict[Lineage, DeploymentRecord] = field(default_factory=dict)
    # Record that most recently reached COMPLETED, across both lineages
    latest_deployment: DeploymentRecord | None = None
    # Partial content of files still streaming; display only, never written
    live_files: dict[str, str] = field(default_factory=dict)
    generation_status: GenerationStatus = GenerationStatus.IDLE
    project_name: str = ""
    template_name: str = ""
    dev_state: str = ""
    mvp_generated: bool = False

    def deployment(self, lineage: Lineage) -> DeploymentRecord | None:
        return self.active_deployments.get(lineage)

    @property
    def latest_url(self) -> str | None:
        """URL of the latest completed deployment; None means unavailable."""
        if self.latest_deployment is None:
            return None
        return self.latest_deployment.url


class MessageDispatcher:
    """Classifies inbound frames and reconciles them into SessionState."""

    def __init__(
        self,
        session: Session,
        materializer: Materializer,
        *,
        state: SessionState | None = None,
        conversation_tail: int = 50,
        frame_callback: ObserverCallback | None = None,
        notice_callback: ObserverCallback | None = None,
    ) -> None:
        self._session = session
        self._materializer = materializer
        self._state = state or SessionState(session_id=session.id)
        self._conversation_tail = conversation_tail
        self._frame_callback = frame_callback
        self._notice_callback = notice_callback

    @property
    def state(self) -> SessionState:
        return self._state

    # ── intake ───────────────────────────────────────────────────────

    async def run(self, channel: Channel) -> None:
        """Process frames from *channel* until it closes."""
        async for raw in channel.frames():
            try:
                await self.handle_raw(raw)
            except Exception:
                logger.exception("Error processing channel frame")
        logger.info(
            "Frame loop ended for session %s (channel %s)",
            self._session.id, channel.state.value,
        )

    async def handle_raw(self, raw: str | bytes) -> InboundFrame | None:
        """Parse and dispatch one raw frame. Malformed frames are dropped."""
        try:
            frame = decode_frame(raw)
        except MessageParseError as exc:
            logger.warning("Dropping frame: %s", exc)
            return None
        await self.dispatch(frame)
        return frame

    async def dispatch(self, frame: InboundFrame) -> None:
        if isinstance(frame, ConnectionSync):
            await self._handle_connection_sync(frame)
        elif isinstance(frame, LifecycleFrame):
            self._handle_lifecycle(frame)
        elif isinstance(frame, PhaseProgress):
            self._handle_phase_progress(frame)
        elif isinstance(frame, FileProgress):
            await self._handle_file_progress(frame)
        elif isinstance(frame, DeploymentFrame):
            await self._handle_deployment(frame)
        elif isinstance(frame, ConversationFrame):
            self._handle_conversation(frame)
        elif isinstance(frame, ErrorFrame):
            await self._handle_error(frame)
        else:
            logger.debug("Ignoring unrecognized frame type %r", frame.type)
            return
        await fire_callback(self._frame_callback, frame)

    # ── helpers ──────────────────────────────────────────────────────

    async def _notify(self, notice: Notice) -> None:
        await fire_callback(self._notice_callback, notice)

    async def _materialize(
        self, path: str, contents: str, purpose: str | None,
    ) -> FileArtifact | None:
        """Write one file off the event loop; report failures as notices."""
        try:
            artifact = await asyncio.to_thread(
                self._materializer.materialize,
                self._session.id, path, contents, purpose=purpose,
            )
        except ArtifactWriteError as exc:
            logger.warning("Write failed for %s: %s", path, exc)
            await self._notify(Notice(
                kind=NoticeKind.WRITE_FAILED, message=str(exc), path=path,
            ))
            return None
        except Exception as exc:
            logger.exception("Unexpected error writing %s", path)
            await self._notify(Notice(
                kind=NoticeKind.WRITE_FAILED,
                message=f"{type(exc).__name__}: {exc}",
                path=path,
            ))
            return None
        self._state.files[artifact.path] = artifact
        return artifact

    def _trim_conversation(self) -> None:
        tail = self._conversation_tail
        if tail > 0 and len(self._state.conversation) > tail:
            del self._state.conversation[:-tail]

    # ── individual frame handlers ────────────────────────────────────

    async def _handle_connection_sync(self, frame: ConnectionSync) -> None:
        snap = frame.snapshot
        s = self._state
        logger.info(
            "Connection sync for %s: %d files, phase %d/%d",
            self._session.id, len(snap.files), snap.current_phase, snap.phases_counter,
        )
        previous = s.files
        s.files = {}
        for entry in snap.files:
            artifact = await self._materialize(entry.path, entry.contents, entry.purpose)
            if artifact is None and entry.path in previous:
                # Disk still holds the old version; keep mirroring it.
                s.files[entry.path] = previous[entry.path]

        phases: dict[int, Phase] = {}
        for phase in snap.phases:
            old = s.phases.get(phase.number)
            if old is not None and old.status == PhaseStatus.FAILED:
                phase.status = PhaseStatus.FAILED
            phases[phase.number] = phase
        for number, old in s.phases.items():
            if old.status == PhaseStatus.FAILED and number not in phases:
                phases[number] = old
        s.phases = phases
        s.current_phase = snap.current_phase
        s.phases_counter = snap.phases_counter

        s.conversation = list(snap.conversation)
        self._trim_conversation()
        s.live_files.clear()

        s.project_name = snap.project_name
        s.template_name = snap.template_name or self._session.template_name
        s.dev_state = snap.dev_state
        s.mvp_generated = snap.mvp_generated
        if snap.should_be_generating:
            s.generation_status = GenerationStatus.GENERATING
        elif s.generation_status == GenerationStatus.GENERATING:
            s.generation_status = GenerationStatus.IDLE

    def _handle_lifecycle(self, frame: LifecycleFrame) -> None:
        logger.info("Generation %s: %s", frame.type.removeprefix("generation_"), frame.message)
        self._state.generation_status = frame.status

    def _resolve_phase_number(self, frame: PhaseProgress) -> int:
        phases = self._state.phases
        if frame.number is not None:
            return frame.number
        if frame.name:
            for number, phase in phases.items():
                if phase.name == frame.name:
                    return number
        if frame.status == PhaseStatus.GENERATING:
            return max(phases, default=0) + 1
        return self._state.current_phase or max(phases, default=0) or 1

    def _handle_phase_progress(self, frame: PhaseProgress) -> None:
        number = self._resolve_phase_number(frame)
        phase = self._state.phases.get(number)
        if phase is None:
            phase = Phase(number=number, name=frame.name)
            self._state.phases[number] = phase
        try:
            changed = validate_phase_transition(number, phase.status, frame.status)
        except InvalidPhaseTransitionError as exc:
            logger.warning("Ignoring phase frame: %s", exc)
            return
        if changed:
            logger.debug("Phase %d: %s -> %s", number, phase.status.value, frame.status.value)
            phase.status = frame.status
        if frame.name:
            phase.name = frame.name
        if frame.files_count is not None:
            phase.files_count = frame.files_count
        if frame.fix_count is not None:
            phase.fix_count = frame.fix_count
        self._state.current_phase = number

    async def _handle_file_progress(self, frame: FileProgress) -> None:
        live = self._state.live_files
        if frame.stage == FileStage.GENERATING:
            if frame.path:
                live[frame.path] = ""
                logger.debug("Generating %s", frame.path)
            return
        if frame.stage == FileStage.CHUNK:
            if frame.path:
                if frame.mode == ChunkMode.OVERWRITE:
                    live[frame.path] = frame.chunk
                else:
                    live[frame.path] = live.get(frame.path, "") + frame.chunk
            return

        if not frame.path or frame.contents is None:
            logger.warning(
                "file_generated frame without path/contents (path=%r)", frame.path,
            )
            return
        artifact = await self._materialize(frame.path, frame.contents, frame.purpose)
        live.pop(frame.path, None)
        if artifact is not None:
            logger.info("File generated: %s (%d bytes)", artifact.path, artifact.size)

    async def _handle_deployment(self, frame: DeploymentFrame) -> None:
        s = self._state
        lineage = frame.lineage
        when = frame.timestamp or _utcnow()
        key_identity = frame.identity or ""

        if frame.stage == DeploymentStage.STARTED:
            record = s.deployments.get((lineage, key_identity))
            if record is None or record.status != DeploymentStatus.STARTED:
                record = DeploymentRecord(
                    lineage=lineage, identity=key_identity, started_at=when,
                )
                s.deployments[(lineage, key_identity)] = record
            record.message = frame.message
            s.active_deployments[lineage] = record
            logger.info("%s deployment started (%s)", lineage.value, key_identity or "-")
            return

        if frame.identity is not None:
            record = s.deployments.get((lineage, frame.identity))
            active = s.active_deployments.get(lineage)
            if (
                record is None
                and active is not None
                and active.status == DeploymentStatus.STARTED
                and not active.identity
            ):
                # Identity first reported on completion; re-key the open record.
                s.deployments.pop((lineage, ""), None)
                active.identity = frame.identity
                s.deployments[(lineage, frame.identity)] = active
                record = active
        else:
            record = s.active_deployments.get(lineage)
        if record is None:
            record = DeploymentRecord(
                lineage=lineage, identity=key_identity, started_at=when,
            )
            s.deployments[(lineage, key_identity)] = record
            s.active_deployments[lineage] = record

        if frame.files_deployed is not None:
            record.files_deployed = frame.files_deployed
        if frame.message:
            record.message = frame.message

        if frame.stage == DeploymentStage.COMPLETED:
            record.status = DeploymentStatus.COMPLETED
            record.url = frame.url
            record.completed_at = when
            record.error = None
            s.latest_deployment = record
            if frame.url:
                logger.info("%s deployment completed: %s", lineage.value, frame.url)
            else:
                logger.warning("%s deployment completed without a URL", lineage.value)
            return

        record.status = DeploymentStatus.FAILED
        record.error = frame.error
        logger.warning("%s deployment failed: %s", lineage.value, frame.error)
        await self._notify(Notice(
            kind=NoticeKind.DEPLOYMENT_FAILED,
            message=frame.error or "deployment failed",
            timestamp=when,
            lineage=lineage,
        ))

    def _handle_conversation(self, frame: ConversationFrame) -> None:
        s = self._state
        if frame.messages is not None:
            s.conversation = list(frame.messages)
            self._trim_conversation()
            return

        if frame.message:
            s.conversation.append(ConversationEntry(
                role=ConversationRole.ASSISTANT,
                content=frame.message,
                timestamp=frame.timestamp or _utcnow(),
                conversation_id=frame.conversation_id,
            ))
            self._trim_conversation()

        if frame.tool is None:
            return
        target = next(
            (e for e in reversed(s.conversation) if e.role == ConversationRole.ASSISTANT),
            None,
        )
        if target is None:
            logger.debug("Tool %s reported with no assistant entry", frame.tool.name)
            return
        for tool in reversed(target.tools):
            if tool.name == frame.tool.name and tool.status == "start":
                tool.status = frame.tool.status
                tool.result = frame.tool.result
                return
        target.tools.append(frame.tool)

    async def _handle_error(self, frame: ErrorFrame) -> None:
        event = ErrorEvent(
            kind=frame.error_kind,
            message=frame.message,
            timestamp=frame.timestamp or _utcnow(),
        )
        rate_limited = frame.error_kind == ErrorKind.RATE_LIMIT
        logger.warning("Server %s: %s", "rate limit" if rate_limited else "error", frame.message)
        await self._notify(Notice(
            kind=NoticeKind.RATE_LIMIT if rate_limited else NoticeKind.REMOTE_ERROR,
            message=frame.message,
            timestamp=event.timestamp,
            error=event,
        ))
