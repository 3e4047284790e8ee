# prunarr/services/retention/__init__.py
"""
Retention management for media libraries.

Lifecycle:
- Rule evaluation flags stale items (protection always wins)
- Flagged items wait in the deletion queue for their grace period
- The queue processor deletes expired items through the *arr services

Services:
- conditions: Condition decoding and evaluation
- protection: Protection evaluator
- engine: Rule engine
- queue_service: Deletion queue state machine
- processor: Queue sweeps and immediate deletion
- tasks: Scheduler entry points
"""

from prunarr.services.retention.arr_executor import (
    ArrDeletionExecutor,
    ArrFile,
    OverseerrClient,
    RadarrClient,
    SonarrClient,
)
from prunarr.services.retention.conditions import (
    Condition,
    ConditionField,
    ConditionOperator,
    decode_conditions,
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
)
from prunarr.services.retention.engine import RuleEngine, parse_rule
from prunarr.services.retention.errors import (
    AlreadyDeletedError,
    ConfigurationError,
    ConflictError,
    DeletionCancelledError,
    ExecutionError,
    ItemNotFoundError,
    ItemProtectedError,
    NotInQueueError,
    NotProtectedError,
    RetentionError,
)
from prunarr.services.retention.executor import (
    DeletionExecutor,
    DeletionOutcome,
    DeletionProgress,
    DeletionStage,
    ExecutionResult,
    FileProgress,
    ProgressChannel,
)
from prunarr.services.retention.processor import QueueProcessor
from prunarr.services.retention.protection import apply_protection
from prunarr.services.retention.queue_service import DeletionQueue
from prunarr.services.retention.tasks import (
    TaskResult,
    run_deletion_reminders,
    run_queue_sweep,
    run_rule_evaluation,
)

__all__ = [
    # Conditions
    "Condition",
    "ConditionField",
    "ConditionOperator",
    "decode_conditions",
    "evaluate_condition",
    "evaluate_conditions",
    "resolve_field",
    # Protection
    "apply_protection",
    # Engine
    "RuleEngine",
    "parse_rule",
    # Queue
    "DeletionQueue",
    # Execution
    "DeletionExecutor",
    "ArrDeletionExecutor",
    "ArrFile",
    "SonarrClient",
    "RadarrClient",
    "OverseerrClient",
    "ProgressChannel",
    "DeletionStage",
    "DeletionProgress",
    "DeletionOutcome",
    "FileProgress",
    "ExecutionResult",
    "QueueProcessor",
    # Tasks
    "TaskResult",
    "run_rule_evaluation",
    "run_queue_sweep",
    "run_deletion_reminders",
    # Errors
    "RetentionError",
    "ConfigurationError",
    "ItemNotFoundError",
    "ConflictError",
    "ItemProtectedError",
    "NotProtectedError",
    "NotInQueueError",
    "AlreadyDeletedError",
    "ExecutionError",
    "DeletionCancelledError",
]
