# prunarr/services/retention/engine.py
"""
Rule engine for retention decisions.

Handles:
- Parsing stored rules (conditions decoded once per load)
- Protection-first evaluation of single items
- First-match rule selection with short-circuit AND/OR conditions
- Batch evaluation with per-item failure isolation
- Queueing matched items (run)
"""

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from prunarr.services.notifications import NotificationEvent, NotificationSink, dispatch
from prunarr.services.retention.conditions import decode_conditions, evaluate_conditions
from prunarr.services.retention.errors import ConfigurationError, RetentionError
from prunarr.services.retention.protection import apply_protection
from prunarr.services.retention.queue_service import DeletionQueue
from prunarr.services.retention.types import (
    Action,
    EvaluationSummary,
    ItemEvaluation,
    LogicOperator,
    MediaItem,
    ProtectionConfig,
    Rule,
    RuleMediaType,
    RulesConfig,
    as_utc,
    normalize_deletion_action,
    utcnow,
)

if TYPE_CHECKING:
    from prunarr.stores.base import MediaStore, RuleStore

logger = logging.getLogger(__name__)

# Stored rule action -> engine action
RULE_ACTIONS = {
    "flag": Action.MARK_FOR_DELETION,
    "delete": Action.MARK_FOR_DELETION,
    "mark_for_deletion": Action.MARK_FOR_DELETION,
    "notify": Action.IGNORE,
    "ignore": Action.IGNORE,
    "protect": Action.PROTECT,
}


def map_rule_action(stored_action: Any) -> Action:
    """Map a stored rule action to an engine Action. Unknown values are ignored."""
    if isinstance(stored_action, Action):
        return stored_action
    action = RULE_ACTIONS.get(str(stored_action).lower()) if stored_action else None
    if action is None:
        logger.warning(f"Unknown rule action '{stored_action}', treating as ignore")
        return Action.IGNORE
    return action


def parse_rule(record: dict[str, Any], config: Optional[RulesConfig] = None) -> Rule:
    """
    Build a Rule from a stored rule mapping.

    Explicit rule columns win over settings carried inside the conditions
    payload, which win over RulesConfig defaults.
    """
    config = config or RulesConfig()
    decoded = decode_conditions(record.get("conditions"))

    grace_period_days = record.get("grace_period_days")
    if grace_period_days is None:
        grace_period_days = decoded.grace_period_days
    if grace_period_days is None:
        grace_period_days = config.default_grace_period_days

    deletion_action = normalize_deletion_action(
        record.get("deletion_action") or decoded.deletion_action,
        default=config.default_deletion_action,
    )

    try:
        media_type = RuleMediaType(record.get("media_type") or RuleMediaType.ALL)
    except ValueError:
        logger.warning(f"Rule '{record.get('name')}' has unknown media type '{record.get('media_type')}', using all")
        media_type = RuleMediaType.ALL

    return Rule(
        id=record.get("id"),
        name=record.get("name") or f"Rule {record.get('id')}",
        conditions=decoded.conditions,
        logic=decoded.logic or config.default_condition_logic,
        action=record.get("action") or "flag",
        media_type=media_type,
        enabled=bool(record.get("enabled", True)),
        grace_period_days=max(0, int(grace_period_days)),
        deletion_action=deletion_action,
        reset_external_request=bool(record.get("reset_external_request", False)),
    )


class RuleEngine:
    """
    Evaluates media items against retention rules.

    Usage:
        engine = RuleEngine(media_store, rule_store, config=rules_config)
        summary = engine.run()
    """

    def __init__(
        self,
        media_store: "MediaStore",
        rule_store: "RuleStore",
        config: Optional[RulesConfig] = None,
        protection_config: Optional[ProtectionConfig] = None,
        queue: Optional[DeletionQueue] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        if media_store is None:
            raise ConfigurationError("RuleEngine requires a media store")
        if rule_store is None:
            raise ConfigurationError("RuleEngine requires a rule store")

        self.media_store = media_store
        self.rule_store = rule_store
        self._config = config or RulesConfig()
        self._protection_config = protection_config or ProtectionConfig()
        self.notifier = notifier
        self.queue = queue or DeletionQueue(media_store, config=self._config, notifier=notifier)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_config(self) -> RulesConfig:
        return replace(self._config)

    def update_config(self, **changes: Any) -> RulesConfig:
        """Replace selected RulesConfig fields. Not persisted."""
        if "default_condition_logic" in changes:
            changes["default_condition_logic"] = LogicOperator(str(changes["default_condition_logic"]).upper())
        if "default_deletion_action" in changes:
            changes["default_deletion_action"] = normalize_deletion_action(changes["default_deletion_action"])
        self._config = replace(self._config, **changes)
        self.queue.config = self._config
        logger.info(f"Rules config updated: {sorted(changes)}")
        return self.get_config()

    def get_protection_config(self) -> ProtectionConfig:
        return replace(self._protection_config)

    def update_protection_config(self, **changes: Any) -> ProtectionConfig:
        """Replace selected ProtectionConfig fields. Not persisted."""
        self._protection_config = replace(self._protection_config, **changes)
        logger.info(f"Protection config updated: {sorted(changes)}")
        return self.get_protection_config()

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def load_rules(self) -> list[Rule]:
        """Enabled rules from the store, parsed in store order."""
        return [parse_rule(record, self._config) for record in self.rule_store.get_enabled_rules()]

    def evaluate_item(self, item: MediaItem, rules: list[Rule], now: Optional[datetime] = None) -> ItemEvaluation:
        """
        Evaluate one item: protection first, then the first matching rule.
        """
        now = as_utc(now) or utcnow()

        protection = apply_protection(item, self._protection_config, now)
        if protection.is_protected:
            logger.debug(f"Item '{item.title}' is protected: {protection.reason}", extra={"item_id": item.id})
            return ItemEvaluation(
                item=item,
                matched=False,
                action=Action.PROTECT,
                is_protected=True,
                protection_reason=protection.reason,
                evaluated_at=now,
            )

        for rule in rules:
            if not rule.enabled or not rule.applies_to(item):
                continue

            matched, matched_conditions = evaluate_conditions(item, rule.conditions, rule.logic, now)
            if matched:
                action = map_rule_action(rule.action)
                logger.debug(
                    f"Item '{item.title}' matched rule '{rule.name}' -> {action.value}",
                    extra={"item_id": item.id, "rule_id": rule.id},
                )
                return ItemEvaluation(
                    item=item,
                    matched=True,
                    rule=rule,
                    action=action,
                    matched_conditions=matched_conditions,
                    evaluated_at=now,
                )

        return ItemEvaluation(item=item, matched=False, evaluated_at=now)

    def evaluate_all(
        self,
        items: Optional[list[MediaItem]] = None,
        rules: Optional[list[Rule]] = None,
        now: Optional[datetime] = None,
    ) -> EvaluationSummary:
        """
        Evaluate a batch of items. Missing arguments are loaded from the stores.

        A failure on one item is recorded and the batch continues.
        """
        start_time = time.time()
        now = as_utc(now) or utcnow()
        summary = EvaluationSummary(started_at=now)

        if rules is None:
            rules = self.load_rules()
        rules = [rule for rule in rules if rule.enabled]

        if not rules:
            logger.info("No enabled rules, skipping evaluation")
            summary.completed_at = utcnow()
            return summary

        if items is None:
            items = self.media_store.get_items_for_evaluation(self._config.max_items_per_run)

        for item in items:
            summary.evaluated += 1
            try:
                result = self.evaluate_item(item, rules, now)
            except Exception as e:
                logger.error(f"Failed to evaluate item {item.id}: {e}", extra={"item_id": item.id})
                summary.failed += 1
                summary.ignored += 1
                summary.results.append(ItemEvaluation(item=item, matched=False, error=str(e), evaluated_at=now))
                continue

            summary.results.append(result)
            if result.is_protected or result.action == Action.PROTECT:
                summary.protected += 1
            elif result.matched and result.action == Action.MARK_FOR_DELETION:
                summary.flagged += 1
            else:
                summary.ignored += 1

        summary.completed_at = utcnow()
        summary.duration_ms = int((time.time() - start_time) * 1000)

        logger.info(
            f"Evaluation complete: evaluated={summary.evaluated}, flagged={summary.flagged}, "
            f"protected={summary.protected}, ignored={summary.ignored}, failed={summary.failed}",
            extra={
                "event": "evaluation_complete",
                "items_processed": summary.evaluated,
                "items_failed": summary.failed,
                "duration_ms": summary.duration_ms,
            },
        )
        return summary

    def run(self, now: Optional[datetime] = None) -> EvaluationSummary:
        """
        Evaluate everything eligible and queue the items marked for deletion.

        In dry-run mode nothing is queued. Matches on notify rules are handed
        to the notifier as rule_matched and never queued.
        """
        now = as_utc(now) or utcnow()
        summary = self.evaluate_all(now=now)

        notify_matches = [
            {"id": result.item.id, "title": result.item.title, "rule": result.rule.name}
            for result in summary.results
            if result.matched and result.rule is not None and str(result.rule.action).lower() == "notify"
        ]
        for match in notify_matches:
            logger.info(
                f"Item '{match['title']}' matched notify rule '{match['rule']}'",
                extra={"item_id": match["id"]},
            )

        marked: list[dict[str, Any]] = []
        if self._config.enable_dry_run:
            logger.info(f"[DRY RUN] Would queue {summary.flagged} items")
        else:
            for result in summary.results:
                if not (result.matched and result.action == Action.MARK_FOR_DELETION):
                    continue
                rule = result.rule
                try:
                    self.queue.mark_for_deletion(
                        result.item.id,
                        grace_period_days=rule.grace_period_days,
                        deletion_action=rule.deletion_action,
                        reset_external_request=rule.reset_external_request,
                        rule_id=rule.id,
                        now=now,
                    )
                    summary.queued += 1
                    marked.append({"id": result.item.id, "title": result.item.title, "rule": rule.name})
                except RetentionError as e:
                    summary.queue_failures += 1
                    logger.warning(f"Could not queue item {result.item.id}: {e}", extra={"item_id": result.item.id})

        if marked:
            dispatch(self.notifier, NotificationEvent.ITEMS_MARKED, {"count": len(marked), "items": marked})
        if notify_matches:
            dispatch(
                self.notifier,
                NotificationEvent.RULE_MATCHED,
                {"count": len(notify_matches), "items": notify_matches},
            )
        dispatch(
            self.notifier,
            NotificationEvent.SCAN_COMPLETE,
            {
                "evaluated": summary.evaluated,
                "flagged": summary.flagged,
                "protected": summary.protected,
                "queued": summary.queued,
                "dry_run": self._config.enable_dry_run,
            },
        )
        return summary
