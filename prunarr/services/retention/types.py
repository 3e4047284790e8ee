# prunarr/services/retention/types.py
"""
Data types for the retention rules engine and deletion queue.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class MediaType(str, Enum):
    """Kind of library item."""
    MOVIE = "movie"
    SHOW = "show"
    EPISODE = "episode"


class MediaStatus(str, Enum):
    """Lifecycle state of a media item."""
    MONITORED = "monitored"
    FLAGGED = "flagged"
    PENDING_DELETION = "pending_deletion"
    PROTECTED = "protected"
    DELETED = "deleted"


class RuleMediaType(str, Enum):
    """Which media types a rule applies to."""
    ALL = "all"
    MOVIE = "movie"
    SHOW = "show"  # also covers episodes


class LogicOperator(str, Enum):
    """How a rule's conditions are combined."""
    AND = "AND"
    OR = "OR"


class Action(str, Enum):
    """Outcome of evaluating a rule against an item."""
    MARK_FOR_DELETION = "mark_for_deletion"
    PROTECT = "protect"
    IGNORE = "ignore"


class DeletionAction(str, Enum):
    """Granularity of external cleanup. Interpreted by the deletion executor."""
    UNMONITOR_ONLY = "unmonitor_only"
    DELETE_FILES_ONLY = "delete_files_only"
    UNMONITOR_AND_DELETE = "unmonitor_and_delete"
    FULL_REMOVAL = "full_removal"

    @property
    def label(self) -> str:
        return DELETION_ACTION_LABELS[self]

    @property
    def deletes_files(self) -> bool:
        return self is not DeletionAction.UNMONITOR_ONLY


DELETION_ACTION_LABELS = {
    DeletionAction.UNMONITOR_ONLY: "Unmonitor Only (keep files)",
    DeletionAction.DELETE_FILES_ONLY: "Delete Files Only",
    DeletionAction.UNMONITOR_AND_DELETE: "Unmonitor & Delete Files",
    DeletionAction.FULL_REMOVAL: "Full Removal (delete everything)",
}

# Values written by older releases
LEGACY_DELETION_ACTIONS = {
    "delete_files": DeletionAction.DELETE_FILES_ONLY,
    "unmonitor": DeletionAction.UNMONITOR_ONLY,
    "full_delete": DeletionAction.FULL_REMOVAL,
    "remove": DeletionAction.FULL_REMOVAL,
}


def normalize_deletion_action(
    value: Any,
    default: DeletionAction = DeletionAction.UNMONITOR_AND_DELETE,
) -> DeletionAction:
    """
    Map a stored deletion action (current, legacy or missing) to the enum.

    Unknown values fall back to the default with a warning.
    """
    if isinstance(value, DeletionAction):
        return value
    if not value:
        return default
    if value in LEGACY_DELETION_ACTIONS:
        return LEGACY_DELETION_ACTIONS[value]
    try:
        return DeletionAction(value)
    except ValueError:
        logger.warning(f"Unknown deletion action '{value}', defaulting to {default.value}")
        return default


# -----------------------------------------------------------------------------
# Media items
# -----------------------------------------------------------------------------


@dataclass
class MediaItem:
    """
    Snapshot of a library item as seen by the retention engine.

    Queue fields are only meaningful while status is pending_deletion.
    Protection fields are independent of status.
    """
    id: int
    title: str
    type: MediaType = MediaType.MOVIE
    status: MediaStatus = MediaStatus.MONITORED

    # External ids
    plex_id: Optional[str] = None
    sonarr_id: Optional[int] = None
    radarr_id: Optional[int] = None
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    tvdb_id: Optional[int] = None

    # Metrics
    year: Optional[int] = None
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    resolution: Optional[str] = None
    play_count: int = 0
    last_watched_at: Optional[datetime] = None
    added_at: Optional[datetime] = None
    rating: Optional[float] = None
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    in_progress: bool = False

    # Queue
    marked_at: Optional[datetime] = None
    delete_after: Optional[datetime] = None
    deletion_action: Optional[DeletionAction] = None
    reset_external_request: bool = False
    matched_rule_id: Optional[int] = None

    # Protection
    is_protected: bool = False
    protection_reason: Optional[str] = None

    def __post_init__(self):
        self.type = MediaType(self.type)
        self.status = MediaStatus(self.status)
        if self.deletion_action is not None:
            self.deletion_action = normalize_deletion_action(self.deletion_action)
        self.last_watched_at = as_utc(self.last_watched_at)
        self.added_at = as_utc(self.added_at)
        self.marked_at = as_utc(self.marked_at)
        self.delete_after = as_utc(self.delete_after)

    @property
    def is_queued(self) -> bool:
        return self.status == MediaStatus.PENDING_DELETION

    def with_updates(self, **fields: Any) -> "MediaItem":
        """Copy of this snapshot with the given fields replaced."""
        return replace(self, **fields)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def utcnow() -> datetime:
    return datetime.now(UTC)


# Fields cleared whenever an item leaves the queue
QUEUE_FIELDS_CLEARED = {
    "marked_at": None,
    "delete_after": None,
    "deletion_action": None,
    "reset_external_request": False,
    "matched_rule_id": None,
}


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass
class ProtectionConfig:
    """Operator-tunable thresholds that exempt items from deletion."""
    protect_recently_added: bool = True
    recently_added_days: int = 30
    protect_recently_watched: bool = True
    recently_watched_days: int = 7
    protect_in_progress: bool = True
    protected_genres: list[str] = field(default_factory=list)
    protected_tags: list[str] = field(default_factory=list)
    protected_rating: Optional[float] = 8.0  # protect items rated at or above


@dataclass
class RulesConfig:
    """Defaults applied when rules or requests leave a setting unspecified."""
    default_grace_period_days: int = 7
    default_deletion_action: DeletionAction = DeletionAction.UNMONITOR_AND_DELETE
    default_condition_logic: LogicOperator = LogicOperator.AND
    enable_dry_run: bool = False
    max_items_per_run: int = 1000


# -----------------------------------------------------------------------------
# Rules and evaluation results
# -----------------------------------------------------------------------------


@dataclass
class Rule:
    """
    A parsed retention rule, ready for evaluation.

    Attributes:
        id: Rule id (evaluation order is ascending id when loaded from a store)
        name: Display name
        conditions: Decoded Condition models, evaluated in order
        logic: AND or OR across the whole condition list
        action: Stored rule action (flag, delete, notify, or an Action value)
        media_type: all, movie or show
        enabled: Disabled rules are never evaluated
        grace_period_days: Days between marking and eligibility for deletion
        deletion_action: What the executor should do once the grace period ends
        reset_external_request: Reset the request in Overseerr after deletion
    """
    id: Optional[int]
    name: str
    conditions: list = field(default_factory=list)
    logic: LogicOperator = LogicOperator.AND
    action: str = "flag"
    media_type: RuleMediaType = RuleMediaType.ALL
    enabled: bool = True
    grace_period_days: int = 7
    deletion_action: DeletionAction = DeletionAction.UNMONITOR_AND_DELETE
    reset_external_request: bool = False

    def applies_to(self, item: MediaItem) -> bool:
        """Check whether the rule's media type scope covers the item."""
        if self.media_type == RuleMediaType.ALL:
            return True
        if self.media_type == RuleMediaType.MOVIE:
            return item.type == MediaType.MOVIE
        return item.type in (MediaType.SHOW, MediaType.EPISODE)


@dataclass
class ProtectionResult:
    """Verdict of the protection evaluator."""
    is_protected: bool
    reason: Optional[str] = None


@dataclass
class ItemEvaluation:
    """Result of evaluating one item against the rule set."""
    item: MediaItem
    matched: bool
    rule: Optional[Rule] = None
    action: Optional[Action] = None
    matched_conditions: list = field(default_factory=list)
    is_protected: bool = False
    protection_reason: Optional[str] = None
    error: Optional[str] = None
    evaluated_at: datetime = field(default_factory=utcnow)


@dataclass
class EvaluationSummary:
    """Aggregate of a full evaluation run."""
    evaluated: int = 0
    flagged: int = 0
    protected: int = 0
    ignored: int = 0
    failed: int = 0
    results: list[ItemEvaluation] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime = field(default_factory=utcnow)
    duration_ms: int = 0
    queued: int = 0
    queue_failures: int = 0


# -----------------------------------------------------------------------------
# Queue
# -----------------------------------------------------------------------------


@dataclass
class BulkEntry:
    """One id's outcome in a bulk transition."""
    id: int
    title: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class BulkResult:
    """
    Three-way partition of a bulk transition.

    Each requested id appears in exactly one of the lists.
    """
    success: list[BulkEntry] = field(default_factory=list)
    failed: list[BulkEntry] = field(default_factory=list)
    skipped: list[BulkEntry] = field(default_factory=list)

    @property
    def success_ids(self) -> list[int]:
        return [entry.id for entry in self.success]

    @property
    def failed_ids(self) -> list[int]:
        return [entry.id for entry in self.failed]

    @property
    def skipped_ids(self) -> list[int]:
        return [entry.id for entry in self.skipped]


@dataclass
class QueueEntry:
    """A queued item with its countdown."""
    item: MediaItem
    marked_at: datetime
    delete_after: datetime
    days_remaining: int
    action: DeletionAction
    reset_external_request: bool = False
    rule_id: Optional[int] = None

    @property
    def is_expired(self) -> bool:
        return self.days_remaining == 0


@dataclass
class QueueStatistics:
    queue_size: int = 0
    ready_for_deletion: int = 0
    total_size_bytes: int = 0
    will_reset_external: int = 0


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


@dataclass
class ItemOutcome:
    """One item's result within a sweep."""
    id: int
    title: str
    action: DeletionAction
    success: bool
    file_size_freed: int = 0
    overseerr_reset: bool = False
    error: Optional[str] = None
    overseerr_error: Optional[str] = None


@dataclass
class SweepResult:
    """Aggregate of one queue sweep."""
    processed: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: int = 0
    freed_space: int = 0
    external_resets: int = 0
    dry_run: bool = False
    outcomes: list[ItemOutcome] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class DeletionHistoryEntry:
    """Audit record of one executed deletion."""
    media_item_id: Optional[int]
    title: str
    type: MediaType
    deletion_action: DeletionAction
    file_size: Optional[int] = None
    deletion_type: str = "automatic"  # automatic, manual
    deleted_by_rule_id: Optional[int] = None
    overseerr_reset: bool = False
    deleted_at: datetime = field(default_factory=utcnow)
