"""Operation engine package: terminal operations, triggers, rewards and overlays."""

from .model import (
    Action, FilesystemNode, LifecycleEvent, OnFirstSessionOpen, OnFlagSet,
    OnOperationsCompleted, Operation, OperationStep, StepType,
)
from .ledger import CreditsLedger, InsufficientCreditsError, InvalidTransactionError
from .state import PlayerProgressState
from .loader import RecordError, RegistryFetchError, fetch_operation_records, load_host_records, load_operation_records, parse_operation
from .registry import IngestReport, OperationRegistry, PublishError
from .overlay import Host, HostDirectory, compose_filesystem, resolve
from .triggers import CascadeLimitError, evaluate
from .steps import ValidationResult, validate
from .rewards import OperationNotActiveError, apply_rewards
from .narrative import describe
from .commands import ActionError, handle_command, parse_action
from .persistence import InMemoryPlayerStore, JsonPlayerStore, SaveError
from .engine import OperationEngine

__all__ = [
    'Action', 'FilesystemNode', 'LifecycleEvent', 'OnFirstSessionOpen', 'OnFlagSet',
    'OnOperationsCompleted', 'Operation', 'OperationStep', 'StepType',
    'CreditsLedger', 'InsufficientCreditsError', 'InvalidTransactionError',
    'PlayerProgressState',
    'RecordError', 'RegistryFetchError', 'fetch_operation_records', 'load_host_records',
    'load_operation_records', 'parse_operation',
    'IngestReport', 'OperationRegistry', 'PublishError',
    'Host', 'HostDirectory', 'compose_filesystem', 'resolve',
    'CascadeLimitError', 'evaluate',
    'ValidationResult', 'validate',
    'OperationNotActiveError', 'apply_rewards',
    'describe',
    'ActionError', 'handle_command', 'parse_action',
    'InMemoryPlayerStore', 'JsonPlayerStore', 'SaveError',
    'OperationEngine',
]
