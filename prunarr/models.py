"""
prunarr database models

Tables:
- MediaItemRecord: Library items with watch metrics, queue and protection state
- RuleRecord: Operator-defined retention rules
- DeletionHistory: Audit trail of executed deletions
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from prunarr.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


# -----------------------------------------------------------------------------
# Media items
# -----------------------------------------------------------------------------


class MediaItemRecord(Base):
    """
    A movie, show or episode known to the library.

    Populated by the library scanner; mutated by rule evaluation, manual queue
    operations and the deletion sweep.
    """

    __tablename__ = "media_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(16), nullable=False)  # movie, show, episode
    title = Column(String(512), nullable=False)

    # External ids (only used for collaborator calls)
    plex_id = Column(String(64), nullable=True)
    sonarr_id = Column(Integer, nullable=True)
    radarr_id = Column(Integer, nullable=True)
    tmdb_id = Column(Integer, nullable=True)
    imdb_id = Column(String(32), nullable=True)
    tvdb_id = Column(Integer, nullable=True)

    # Metrics
    year = Column(Integer, nullable=True)
    file_path = Column(Text, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    resolution = Column(String(32), nullable=True)
    play_count = Column(Integer, default=0, nullable=False)
    last_watched_at = Column(DateTime(timezone=True), nullable=True)
    added_at = Column(DateTime(timezone=True), nullable=True)
    rating = Column(Float, nullable=True)
    genres = Column(JSON, default=list, nullable=False)
    tags = Column(JSON, default=list, nullable=False)
    in_progress = Column(Boolean, default=False, nullable=False)

    # Lifecycle
    status = Column(String(32), default="monitored", nullable=False)

    # Queue fields (only while pending_deletion)
    marked_at = Column(DateTime(timezone=True), nullable=True)
    delete_after = Column(DateTime(timezone=True), nullable=True)
    deletion_action = Column(String(32), nullable=True)
    reset_external_request = Column(Boolean, default=False, nullable=False)
    matched_rule_id = Column(Integer, ForeignKey("rules.id", ondelete="SET NULL"), nullable=True)

    # Protection
    is_protected = Column(Boolean, default=False, nullable=False)
    protection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_media_items_status", "status"),
        Index("ix_media_items_status_delete_after", "status", "delete_after"),
    )


# -----------------------------------------------------------------------------
# Rules
# -----------------------------------------------------------------------------


class RuleRecord(Base):
    """
    A retention rule. Conditions are stored as JSON and decoded once on load.
    """

    __tablename__ = "rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    media_type = Column(String(16), default="all", nullable=False)  # all, movie, show
    conditions = Column(Text, nullable=False, default="[]")
    action = Column(String(32), default="flag", nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    grace_period_days = Column(Integer, nullable=True)
    deletion_action = Column(String(32), nullable=True)
    reset_external_request = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# -----------------------------------------------------------------------------
# Deletion history
# -----------------------------------------------------------------------------


class DeletionHistory(Base):
    """Audit trail row written after each executed deletion."""

    __tablename__ = "deletion_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    media_item_id = Column(Integer, nullable=True)  # item row may be gone after full removal
    title = Column(String(512), nullable=False)
    type = Column(String(16), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    deletion_action = Column(String(32), nullable=False)
    deletion_type = Column(String(16), nullable=False)  # automatic, manual
    deleted_by_rule_id = Column(Integer, nullable=True)
    overseerr_reset = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
