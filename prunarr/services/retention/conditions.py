# prunarr/services/retention/conditions.py
"""
Condition evaluation for retention rules.

Handles:
- Decoding stored rule conditions (v2 triples and v1 legacy typed conditions)
- Resolving direct and computed item fields through one resolver
- Evaluating one condition, and combining a list with short-circuit AND/OR

Evaluation is pure and never raises: malformed input evaluates to False.
"""

import json
import logging
import math
import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from prunarr.services.retention.types import LogicOperator, MediaItem, as_utc, utcnow

logger = logging.getLogger(__name__)


class ConditionField(str, Enum):
    """Closed vocabulary of fields a condition may test."""

    # Direct attributes
    TITLE = "title"
    TYPE = "type"
    YEAR = "year"
    RESOLUTION = "resolution"
    PLAY_COUNT = "play_count"
    RATING = "rating"
    GENRES = "genres"
    TAGS = "tags"
    FILE_SIZE = "file_size"
    STATUS = "status"
    IN_PROGRESS = "in_progress"

    # Computed
    DAYS_SINCE_ADDED = "days_since_added"
    DAYS_SINCE_WATCHED = "days_since_watched"
    SIZE_GB = "size_gb"
    RESOLUTION_VALUE = "resolution_value"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


THRESHOLD_OPERATORS = {
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN_OR_EQUAL,
}

# camelCase spellings accepted when decoding
FIELD_ALIASES = {
    "daysSinceAdded": "days_since_added",
    "daysSinceWatched": "days_since_watched",
    "daysSinceLastWatched": "days_since_watched",
    "sizeGB": "size_gb",
    "sizeGb": "size_gb",
    "fileSizeGB": "size_gb",
    "fileSize": "file_size",
    "playCount": "play_count",
    "inProgress": "in_progress",
    "resolutionValue": "resolution_value",
}

BYTES_PER_GB = 1024**3


class Condition(BaseModel):
    """One {field, operator, value} triple."""

    model_config = ConfigDict(frozen=True)

    field: ConditionField
    operator: ConditionOperator
    value: Any = None

    @model_validator(mode="before")
    @classmethod
    def accept_op_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "operator" not in data and "op" in data:
            data = {**data, "operator": data["op"]}
        return data

    @field_validator("field", mode="before")
    @classmethod
    def accept_camel_case(cls, v: Any) -> Any:
        if isinstance(v, str):
            return FIELD_ALIASES.get(v, v)
        return v


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------

# v1 typed condition -> (field, operator)
LEGACY_CONDITIONS = {
    "not_watched_days": (ConditionField.DAYS_SINCE_WATCHED, ConditionOperator.GREATER_THAN_OR_EQUAL),
    "added_days_ago": (ConditionField.DAYS_SINCE_ADDED, ConditionOperator.GREATER_THAN_OR_EQUAL),
    "play_count_less_than": (ConditionField.PLAY_COUNT, ConditionOperator.LESS_THAN),
    "file_size_greater_than": (ConditionField.SIZE_GB, ConditionOperator.GREATER_THAN),
    "resolution_less_than": (ConditionField.RESOLUTION_VALUE, ConditionOperator.LESS_THAN),
    "genre_is": (ConditionField.GENRES, ConditionOperator.EQUALS),
    "genre_is_not": (ConditionField.GENRES, ConditionOperator.NOT_EQUALS),
    "year_before": (ConditionField.YEAR, ConditionOperator.LESS_THAN),
    "year_after": (ConditionField.YEAR, ConditionOperator.GREATER_THAN),
    "rating_less_than": (ConditionField.RATING, ConditionOperator.LESS_THAN),
    "type_is": (ConditionField.TYPE, ConditionOperator.EQUALS),
}


class ConditionDecodeError(ValueError):
    pass


class DecodedConditions(BaseModel):
    """Conditions plus the rule-level settings that may travel with them."""

    conditions: list[Condition] = []
    logic: Optional[LogicOperator] = None
    grace_period_days: Optional[int] = None
    deletion_action: Optional[str] = None


def _decode_one(raw: Any) -> Condition:
    if not isinstance(raw, dict):
        raise ConditionDecodeError(f"Condition must be an object, got {type(raw).__name__}")

    if "field" in raw:
        return Condition.model_validate(raw)

    legacy_type = raw.get("type")
    if legacy_type not in LEGACY_CONDITIONS:
        raise ConditionDecodeError(f"Unknown condition type '{legacy_type}'")

    field, operator = LEGACY_CONDITIONS[legacy_type]
    value = raw.get("value")
    if field == ConditionField.RESOLUTION_VALUE and isinstance(value, str):
        value = parse_resolution(value)
    return Condition(field=field, operator=operator, value=value)


def decode_conditions(stored: Any) -> DecodedConditions:
    """
    Decode a rule's stored conditions.

    Accepts JSON text, a list of conditions, or an object carrying
    {conditions, logic, gracePeriodDays, deletionAction}. Any failure is
    logged and yields zero conditions.
    """
    try:
        data = json.loads(stored) if isinstance(stored, (str, bytes)) else stored
        if data is None:
            return DecodedConditions()

        if isinstance(data, list):
            return DecodedConditions(conditions=[_decode_one(c) for c in data])

        if isinstance(data, dict):
            logic = data.get("logic")
            return DecodedConditions(
                conditions=[_decode_one(c) for c in data.get("conditions") or []],
                logic=LogicOperator(logic.upper()) if isinstance(logic, str) else None,
                grace_period_days=data.get("gracePeriodDays", data.get("grace_period_days")),
                deletion_action=data.get("deletionAction", data.get("deletion_action")),
            )

        raise ConditionDecodeError(f"Unsupported conditions payload: {type(data).__name__}")
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning(f"Failed to decode rule conditions, treating as empty: {e}")
        return DecodedConditions()


# -----------------------------------------------------------------------------
# Field resolution
# -----------------------------------------------------------------------------


def parse_resolution(label: Optional[str]) -> Optional[int]:
    """Numeric height for a resolution label ("4K" -> 2160, "720p" -> 720)."""
    if not label:
        return None
    lower = str(label).lower()
    if "4k" in lower or "2160" in lower:
        return 2160
    if "1080" in lower:
        return 1080
    if "720" in lower:
        return 720
    if "480" in lower:
        return 480
    if "sd" in lower or "576" in lower:
        return 576
    match = re.search(r"\d+", lower)
    return int(match.group()) if match else None


def _days_since(timestamp: Optional[datetime], now: datetime) -> Optional[int]:
    if timestamp is None:
        return None
    return max(0, (now - as_utc(timestamp)).days)


def resolve_field(item: MediaItem, field: ConditionField, now: Optional[datetime] = None) -> Any:
    """Read a direct or computed field. Missing data resolves to None."""
    now = as_utc(now) or utcnow()

    if field == ConditionField.DAYS_SINCE_ADDED:
        return _days_since(item.added_at, now)
    if field == ConditionField.DAYS_SINCE_WATCHED:
        return _days_since(item.last_watched_at, now)
    if field == ConditionField.SIZE_GB:
        return item.file_size / BYTES_PER_GB if item.file_size is not None else None
    if field == ConditionField.RESOLUTION_VALUE:
        return parse_resolution(item.resolution)

    value = getattr(item, field.value, None)
    if isinstance(value, Enum):
        return value.value
    return value


# -----------------------------------------------------------------------------
# Operators
# -----------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> Optional[float]:
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _scalar_equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.casefold() == expected.casefold()
    if isinstance(actual, bool) and isinstance(expected, str):
        return str(actual).casefold() == expected.strip().casefold()
    if _is_number(actual):
        expected_number = _as_number(expected)
        return expected_number is not None and actual == expected_number
    return actual == expected


def _equals(actual: Any, expected: Any) -> bool:
    candidates = expected if isinstance(expected, list) else [expected]
    values = actual if isinstance(actual, list) else [actual]
    return any(_scalar_equals(v, c) for v in values for c in candidates)


def _contains(actual: Any, expected: Any) -> bool:
    candidates = expected if isinstance(expected, list) else [expected]
    values = actual if isinstance(actual, list) else [actual]
    return any(
        isinstance(v, str) and isinstance(c, str) and c.casefold() in v.casefold()
        for v in values
        for c in candidates
    )


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def _compare(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    threshold = _as_number(expected)
    if threshold is None or not _is_number(actual):
        return False
    if operator == ConditionOperator.GREATER_THAN:
        return actual > threshold
    if operator == ConditionOperator.LESS_THAN:
        return actual < threshold
    if operator == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return actual >= threshold
    return actual <= threshold


def evaluate_condition(item: MediaItem, condition: Condition, now: Optional[datetime] = None) -> bool:
    """
    Evaluate one condition against one item.

    Never raises. Type mismatches and unknown operators evaluate to False.
    """
    try:
        operator = ConditionOperator(condition.operator)
    except ValueError:
        logger.warning(f"Unknown condition operator '{condition.operator}'")
        return False

    try:
        actual = resolve_field(item, ConditionField(condition.field), now)

        if operator in THRESHOLD_OPERATORS:
            if actual is None and condition.field == ConditionField.DAYS_SINCE_WATCHED:
                # Never watched counts as unwatched forever
                actual = math.inf
            return _compare(actual, operator, condition.value)

        if operator == ConditionOperator.EQUALS:
            return actual is not None and _equals(actual, condition.value)
        if operator == ConditionOperator.NOT_EQUALS:
            return actual is None or not _equals(actual, condition.value)
        if operator == ConditionOperator.CONTAINS:
            return _contains(actual, condition.value)
        if operator == ConditionOperator.NOT_CONTAINS:
            return not _contains(actual, condition.value)
        if operator == ConditionOperator.IS_EMPTY:
            return _is_empty(actual)
        return not _is_empty(actual)
    except Exception as e:
        logger.warning(f"Condition {condition.field}/{condition.operator} failed on item {item.id}: {e}")
        return False


def evaluate_conditions(
    item: MediaItem,
    conditions: list[Condition],
    logic: LogicOperator = LogicOperator.AND,
    now: Optional[datetime] = None,
) -> tuple[bool, list[Condition]]:
    """
    Combine conditions with short-circuit AND/OR.

    Returns:
        (matched, conditions that evaluated True). An empty list never matches.
    """
    if not conditions:
        return False, []

    matched_conditions: list[Condition] = []
    for condition in conditions:
        result = evaluate_condition(item, condition, now)
        if result:
            matched_conditions.append(condition)
            if logic == LogicOperator.OR:
                return True, matched_conditions
        elif logic == LogicOperator.AND:
            return False, matched_conditions

    return logic == LogicOperator.AND, matched_conditions
