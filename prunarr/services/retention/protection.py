# prunarr/services/retention/protection.py
"""
Protection evaluator.

Decides whether an item is exempt from any deletion action, independent of
rules. Checks run in a fixed order and the first one that applies supplies
the reason.
"""

from datetime import datetime
from typing import Optional

from prunarr.services.retention.conditions import ConditionField, resolve_field
from prunarr.services.retention.types import MediaItem, ProtectionConfig, ProtectionResult, as_utc, utcnow

MANUAL_PROTECTION_REASON = "Manually protected"


def _lowered(values: list[str]) -> set[str]:
    return {v.casefold() for v in values if isinstance(v, str)}


def apply_protection(
    item: MediaItem,
    config: ProtectionConfig,
    now: Optional[datetime] = None,
) -> ProtectionResult:
    """
    Evaluate protection for one item.

    Order: manual flag, recently added, recently watched, in progress,
    protected genre, protected tag, rating threshold.
    """
    now = as_utc(now) or utcnow()

    if item.is_protected:
        return ProtectionResult(True, item.protection_reason or MANUAL_PROTECTION_REASON)

    if config.protect_recently_added:
        days = resolve_field(item, ConditionField.DAYS_SINCE_ADDED, now)
        if days is not None and days < config.recently_added_days:
            return ProtectionResult(True, f"Recently added ({days} days ago)")

    if config.protect_recently_watched:
        days = resolve_field(item, ConditionField.DAYS_SINCE_WATCHED, now)
        if days is not None and days < config.recently_watched_days:
            return ProtectionResult(True, f"Recently watched ({days} days ago)")

    if config.protect_in_progress and item.in_progress:
        return ProtectionResult(True, "Currently in progress")

    protected_genres = _lowered(config.protected_genres)
    if protected_genres:
        for genre in item.genres or []:
            if isinstance(genre, str) and genre.casefold() in protected_genres:
                return ProtectionResult(True, f"Protected genre: {genre}")

    protected_tags = _lowered(config.protected_tags)
    if protected_tags:
        for tag in item.tags or []:
            if isinstance(tag, str) and tag.casefold() in protected_tags:
                return ProtectionResult(True, f"Protected tag: {tag}")

    if config.protected_rating is not None and item.rating is not None:
        if item.rating >= config.protected_rating:
            return ProtectionResult(True, f"High rating ({item.rating} >= {config.protected_rating})")

    return ProtectionResult(False)
