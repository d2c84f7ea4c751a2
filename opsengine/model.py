"""Operation engine data models.

This module defines the definition-side data structures: Operation with its
trigger, steps, requirements, rewards, narrative bindings and filesystem
overlays, plus the player Action submitted at the terminal.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple, Union

OperationStatus = Literal["draft", "published"]
NodeType = Literal["dir", "file"]
FlagValue = Union[str, bool]


# ---------------- Triggers ----------------

@dataclass(frozen=True)
class OnFirstSessionOpen:
    """Activates once the player's session-opened flag is set."""
    kind = "ON_FIRST_SESSION_OPEN"


@dataclass(frozen=True)
class OnOperationsCompleted:
    """Activates once every listed operation id has been completed."""
    operation_ids: Tuple[str, ...]
    kind = "ON_OPERATIONS_COMPLETED"


@dataclass(frozen=True)
class OnFlagSet:
    """Activates once ``flag_key`` is present (and equals ``flag_value`` if given)."""
    flag_key: str
    flag_value: Optional[FlagValue] = None
    kind = "ON_FLAG_SET"


OperationTrigger = Union[OnFirstSessionOpen, OnOperationsCompleted, OnFlagSet]


# ---------------- Steps ----------------

class StepType(str, Enum):
    SCAN_HOST = "SCAN_HOST"
    CONNECT_HOST = "CONNECT_HOST"
    DELETE_FILE = "DELETE_FILE"
    DISCONNECT_HOST = "DISCONNECT_HOST"
    ACKNOWLEDGE_COMMAND = "ACKNOWLEDGE_COMMAND"


@dataclass(frozen=True)
class HostTargetParams:
    """Params of SCAN_HOST / CONNECT_HOST steps."""
    target_ip: str


@dataclass(frozen=True)
class DeleteFileParams:
    file_path: str
    target_ip: Optional[str] = None


@dataclass(frozen=True)
class DisconnectParams:
    target_ip: Optional[str] = None


@dataclass(frozen=True)
class AcknowledgeParams:
    token: Optional[str] = None  # None accepts any configured token


StepParams = Union[HostTargetParams, DeleteFileParams, DisconnectParams, AcknowledgeParams]

STEP_PARAM_TYPES = {
    StepType.SCAN_HOST: HostTargetParams,
    StepType.CONNECT_HOST: HostTargetParams,
    StepType.DELETE_FILE: DeleteFileParams,
    StepType.DISCONNECT_HOST: DisconnectParams,
    StepType.ACKNOWLEDGE_COMMAND: AcknowledgeParams,
}

# Step types that act on a host and therefore need a resolvable host id
HOST_BOUND_STEP_TYPES = frozenset({StepType.DELETE_FILE, StepType.DISCONNECT_HOST})


@dataclass(frozen=True)
class StepHints:
    prompt: Optional[str] = None
    command_example: Optional[str] = None


@dataclass(frozen=True)
class OperationStep:
    """A single required player action within an operation."""
    id: str
    type: StepType
    params: StepParams
    target_host_id: Optional[str] = None  # falls back to Operation.default_host_id
    auto_advance: bool = True
    description: str = ""
    hints: StepHints = field(default_factory=StepHints)


# ---------------- Requirements & rewards ----------------

@dataclass(frozen=True)
class FlagCondition:
    """A flag check; ``value`` None means "present"."""
    key: str
    value: Optional[FlagValue] = None


@dataclass(frozen=True)
class OperationRequirements:
    required_flags: List[FlagCondition] = field(default_factory=list)
    required_operations: List[str] = field(default_factory=list)
    blocked_by_flags: List[FlagCondition] = field(default_factory=list)


@dataclass(frozen=True)
class FlagWrite:
    key: str
    value: FlagValue = True


@dataclass(frozen=True)
class OperationRewards:
    credits: int = 0
    flags: List[FlagWrite] = field(default_factory=list)
    completion_flag: Optional[str] = None  # defaulted by Operation.completion_flag
    unlocks_commands: List[str] = field(default_factory=list)


# ---------------- Narrative ----------------

class LifecycleEvent(str, Enum):
    ACTIVATED = "activated"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class MailTemplate:
    subject: str
    body: str
    sender: Optional[str] = None
    preheader: Optional[str] = None


@dataclass(frozen=True)
class NarrativeBindings:
    """Authored inbox content for each lifecycle event."""
    handler: Optional[str] = None
    activation: Optional[MailTemplate] = None
    completion: Optional[MailTemplate] = None
    failure: Optional[MailTemplate] = None

    def template_for(self, event: LifecycleEvent) -> Optional[MailTemplate]:
        return {
            LifecycleEvent.ACTIVATED: self.activation,
            LifecycleEvent.COMPLETED: self.completion,
            LifecycleEvent.FAILED: self.failure,
        }[event]


# ---------------- Filesystem ----------------

@dataclass(frozen=True)
class FilesystemNode:
    """A node of a host filesystem; ``children`` holds child names for dirs."""
    type: NodeType
    path: str
    children: Optional[List[str]] = None
    content: Optional[str] = None

    @property
    def name(self) -> str:
        if self.path == "/":
            return "/"
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_file(self) -> bool:
        return self.type == "file"


def normalize_path(value: Optional[str]) -> str:
    """Collapse a path to the canonical '/a/b' form."""
    if not value or value == "/":
        return "/"
    return "/" + "/".join(part for part in value.split("/") if part)


def parent_path(value: str) -> str:
    parts = [p for p in value.split("/") if p][:-1]
    return "/" + "/".join(parts) if parts else "/"


# ---------------- Operation ----------------

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def default_completion_flag(operation_id: str) -> str:
    """Canonical completion flag for an operation id (SR-201 -> quest_SR201_completed)."""
    return f"quest_{_NON_ALNUM.sub('', operation_id)}_completed"


@dataclass(frozen=True)
class Operation:
    """An operation definition; immutable once published."""
    id: str
    title: str
    trigger: OperationTrigger
    steps: List[OperationStep]
    description: str = ""
    requirements: OperationRequirements = field(default_factory=OperationRequirements)
    rewards: OperationRewards = field(default_factory=OperationRewards)
    default_host_id: Optional[str] = None
    filesystem_overlays: Dict[str, Dict[str, FilesystemNode]] = field(default_factory=dict)
    status: OperationStatus = "published"
    narrative: NarrativeBindings = field(default_factory=NarrativeBindings)
    version: int = 1

    @property
    def completion_flag(self) -> str:
        return self.rewards.completion_flag or default_completion_flag(self.id)

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    def get_step(self, index: int) -> Optional[OperationStep]:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def host_for(self, step: OperationStep) -> Optional[str]:
        return step.target_host_id or self.default_host_id

    def written_flags(self) -> List[str]:
        """Flag keys this operation writes when it completes."""
        keys = [w.key for w in self.rewards.flags]
        keys.extend(f"command_unlocked:{c}" for c in self.rewards.unlocks_commands)
        keys.append(self.completion_flag)
        return keys


# ---------------- Player actions ----------------

@dataclass
class Action:
    """A resolved terminal action.

    ``command`` is one of scan, connect, disconnect, delete, ack. ``host_id``
    and ``target_ip`` are filled in by the engine from the host directory and
    the player's current connection where the command leaves them implicit.
    """
    command: str
    target_ip: Optional[str] = None
    file_path: Optional[str] = None
    host_id: Optional[str] = None
    token: Optional[str] = None
