"""
Sync Rule Engine - copy-on-approval of field values into other sections.

The rule table is static. When a section is approved, every rule whose source
is that section copies the (transformed) source value into the target
section's document, written through the Section Store and reconciled.
Rule failures are reported per rule and never block the approval.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import field_store, reconcile, section_store
from .errors import NotFoundError
from .field_registry import SectionRegistry, registry as default_registry
from .paths import canonical_json, get_path, is_empty, set_path
from ..util.logging import logger

SYNC_OK = "ok"
SYNC_SKIPPED = "skipped"
SYNC_FAILED = "failed"

_MISSING = object()


def identity(value: Any) -> Any:
    return value


@dataclass(frozen=True)
class SyncRule:
    source_section: str
    source_field: str
    target_section: str
    target_field: str
    transform: Callable[[Any], Any] = identity
    description: str = ""

    @property
    def rule_id(self) -> str:
        return f"{self.source_section}.{self.source_field}->{self.target_section}.{self.target_field}"


@dataclass
class SyncOutcome:
    rule_id: str
    target_section: str
    target_field: str
    status: str
    version: Optional[int] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "target_section": self.target_section,
            "target_field": self.target_field,
            "status": self.status,
            "version": self.version,
            "error": self.error,
            "warnings": list(self.warnings),
        }


@dataclass
class SyncRuleFailure(SyncOutcome):
    """Outcome of a rule whose target write failed."""
    status: str = SYNC_FAILED


DEFAULT_SYNC_RULES = (
    SyncRule(
        source_section="leadMagnet",
        source_field="freeGift.title",
        target_section="facebookAds",
        target_field="adCopy.freeGiftName",
        description="Sync Free Gift title to all Facebook Ads",
    ),
)


class SyncRuleTable:
    """Static (source section, source field) -> targets lookup."""

    def __init__(self, rules: Iterable[SyncRule] = DEFAULT_SYNC_RULES):
        self.rules: List[SyncRule] = list(rules)

    def targets_for(self, section_type: str, field_path: str) -> List[SyncRule]:
        return [r for r in self.rules if r.source_section == section_type and r.source_field == field_path]

    def rules_for_section(self, section_type: str) -> List[SyncRule]:
        return [r for r in self.rules if r.source_section == section_type]

    def preview_message(self, section_type: str, field_path: str,
                        registry: SectionRegistry = None) -> Optional[str]:
        """Human readable description of where a field will sync to, or None."""
        targets = self.targets_for(section_type, field_path)
        if not targets:
            return None
        registry = registry or default_registry
        descriptions = []
        for rule in targets:
            name = rule.target_section
            if registry.is_known(rule.target_section):
                name = registry.get_section(rule.target_section).title
            descriptions.append(f"{name} ({rule.target_field})")
        return "Will sync to: " + ", ".join(descriptions)

    def edges(self) -> List[tuple]:
        return [(r.source_section, r.target_section) for r in self.rules]


# Global rule table
sync_table = SyncRuleTable()


def apply(rule: SyncRule, source_value: Any, target_document: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a copy of target_document with the transformed source value at the rule's target path."""
    return set_path(target_document or {}, rule.target_field, rule.transform(source_value))


def _source_value(project_id: str, rule: SyncRule, registry: SectionRegistry) -> Any:
    try:
        return field_store.get_current(project_id, rule.source_section, rule.source_field, registry).value
    except NotFoundError:
        pass
    try:
        document = section_store.get_current(project_id, rule.source_section, registry)
    except NotFoundError:
        return _MISSING
    return get_path(document.content, rule.source_field, _MISSING)


def _apply_rule(project_id: str, rule: SyncRule, registry: SectionRegistry) -> SyncOutcome:
    source_value = _source_value(project_id, rule, registry)
    if source_value is _MISSING or is_empty(source_value):
        return SyncOutcome(rule.rule_id, rule.target_section, rule.target_field, SYNC_SKIPPED,
                           error="source field has no value")

    try:
        target = section_store.get_current(project_id, rule.target_section, registry)
        content, expected_version = target.content, target.version
    except NotFoundError:
        content, expected_version = {}, 0

    updated = apply(rule, source_value, content)
    if expected_version and canonical_json(updated) == canonical_json(content):
        return SyncOutcome(rule.rule_id, rule.target_section, rule.target_field, SYNC_OK,
                           version=expected_version)

    result = section_store.put_new(project_id, rule.target_section, updated,
                                   expected_version=expected_version, registry=registry)
    report = reconcile.reconcile_to_head(project_id, rule.target_section, result.version, updated, registry)
    return SyncOutcome(rule.rule_id, rule.target_section, rule.target_field, SYNC_OK,
                       version=result.version, warnings=list(report.errors))


def fan_out(project_id: str, source_section, table: SyncRuleTable = None,
            registry: SectionRegistry = None) -> List[SyncOutcome]:
    """Apply every rule whose source is source_section. Never raises for a single rule."""
    registry = registry or default_registry
    table = table or sync_table
    source_section = registry.get_section(source_section).section_type

    outcomes = []
    for rule in table.rules_for_section(source_section):
        start_time = time.time()
        try:
            outcome = _apply_rule(project_id, rule, registry)
        except Exception as e:
            outcome = SyncRuleFailure(rule.rule_id, rule.target_section, rule.target_field, error=str(e))
        outcomes.append(outcome)
        logger.log_sync_outcome(rule.rule_id, rule.target_section, outcome.status, {
            "project_id": project_id,
            "version": outcome.version,
            "error": outcome.error,
            "duration_ms": round((time.time() - start_time) * 1000, 2)
        })
    return outcomes
