# prunarr/stores/__init__.py
"""
Store abstraction for media items, rules and deletion history.

The retention services depend only on the interfaces in base; SQL and
in-memory implementations are interchangeable.
"""

from prunarr.stores.base import (
    DeletionHistoryStore,
    MediaStore,
    RuleStore,
)
from prunarr.stores.memory import (
    InMemoryDeletionHistoryStore,
    InMemoryMediaStore,
    InMemoryRuleStore,
)
from prunarr.stores.sql import (
    SqlDeletionHistoryStore,
    SqlMediaStore,
    SqlRuleStore,
)

__all__ = [
    "MediaStore",
    "RuleStore",
    "DeletionHistoryStore",
    "InMemoryMediaStore",
    "InMemoryRuleStore",
    "InMemoryDeletionHistoryStore",
    "SqlMediaStore",
    "SqlRuleStore",
    "SqlDeletionHistoryStore",
]
