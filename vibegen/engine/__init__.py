"""vibegen engine: models, configuration and state machines for build sessions."""
from .models import (
    AgentMode,
    BuildRequest,
    ConversationEntry,
    ConversationRole,
    DeploymentRecord,
    DeploymentStatus,
    ErrorEvent,
    ErrorKind,
    FileArtifact,
    GenerationStatus,
    ImageAttachment,
    Lineage,
    Notice,
    NoticeKind,
    Phase,
    PhaseStatus,
    Session,
    ToolInvocation,
)
from .config import ClientConfig, configure_logging
from .yaml_config import load_yaml_config
from .lifecycle import ChannelState
from .errors import (
    ArtifactWriteError,
    ConnectError,
    FrameParseError,
    GenerationClientError,
    InvalidBuildRequestError,
    InvalidPhaseTransitionError,
    MessageParseError,
    NotConnectedError,
    PathEscapeError,
    TransportError,
)

__all__ = [
    "AgentMode",
    "ArtifactWriteError",
    "BuildRequest",
    "ChannelState",
    "ClientConfig",
    "ConnectError",
    "ConversationEntry",
    "ConversationRole",
    "DeploymentRecord",
    "DeploymentStatus",
    "ErrorEvent",
    "ErrorKind",
    "FileArtifact",
    "FrameParseError",
    "GenerationClientError",
    "GenerationStatus",
    "ImageAttachment",
    "InvalidBuildRequestError",
    "InvalidPhaseTransitionError",
    "Lineage",
    "MessageParseError",
    "NotConnectedError",
    "Notice",
    "NoticeKind",
    "PathEscapeError",
    "Phase",
    "PhaseStatus",
    "Session",
    "ToolInvocation",
    "TransportError",
    "configure_logging",
    "load_yaml_config",
]
