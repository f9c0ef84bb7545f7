"""Phase and channel state machines.

Defines valid transitions and enforces them. Invalid transitions
raise rather than silently proceeding.

Phase diagram (each arrow may be skipped forward, never backward):

    PLANNED ──> GENERATING ──> GENERATED ──> IMPLEMENTING ──> IMPLEMENTED
                                                                  │
                               VALIDATED <── VALIDATING <─────────┘

    Any non-terminal state ──> FAILED  (sticky)

Channel diagram:

    CONNECTING ──> OPEN ──> CLOSING ──> CLOSED
        │           │  └──────────────────^
        └───────────┴──> ERRORED
"""
from __future__ import annotations

from enum import Enum

from .errors import InvalidPhaseTransitionError
from .models import PhaseStatus

_PHASE_ORDER: tuple[PhaseStatus, ...] = (
    PhaseStatus.PLANNED,
    PhaseStatus.GENERATING,
    PhaseStatus.GENERATED,
    PhaseStatus.IMPLEMENTING,
    PhaseStatus.IMPLEMENTED,
    PhaseStatus.VALIDATING,
    PhaseStatus.VALIDATED,
)

_PHASE_RANK: dict[PhaseStatus, int] = {
    status: rank for rank, status in enumerate(_PHASE_ORDER)
}

TERMINAL_PHASE_STATES = frozenset({PhaseStatus.VALIDATED, PhaseStatus.FAILED})


def validate_phase_transition(
    number: int, current: PhaseStatus, target: PhaseStatus,
) -> bool:
    """Check a phase status change.

    Returns False when *target* equals *current* (nothing to apply),
    True when the change is a forward move. Raises
    InvalidPhaseTransitionError for backward moves and for any move
    out of FAILED or VALIDATED.
    """
    if current == target:
        return False
    if current in TERMINAL_PHASE_STATES:
        raise InvalidPhaseTransitionError(number, current.value, target.value)
    if target == PhaseStatus.FAILED:
        return True
    if _PHASE_RANK[target] < _PHASE_RANK[current]:
        raise InvalidPhaseTransitionError(number, current.value, target.value)
    return True


class ChannelState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    ERRORED = "errored"


VALID_CHANNEL_TRANSITIONS: dict[ChannelState, set[ChannelState]] = {
    ChannelState.CONNECTING: {ChannelState.OPEN, ChannelState.ERRORED},
    ChannelState.OPEN: {
        ChannelState.CLOSING,
        ChannelState.CLOSED,
        ChannelState.ERRORED,
    },
    ChannelState.CLOSING: {ChannelState.CLOSED},
    ChannelState.CLOSED: set(),
    ChannelState.ERRORED: set(),
}


def validate_channel_transition(
    current: ChannelState, target: ChannelState,
) -> None:
    """Validate a channel state change. Raises ValueError if invalid."""
    allowed = VALID_CHANNEL_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid channel transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
