"""
Dependency Propagator - pushes atomic field changes into dependent sections.

Runs in the background after a document write. Only changed string values of
the source section's atomic fields propagate, by find-and-replace in the
string leaves of each dependent document, so re-running for the same
(old, new) pair is idempotent. Every dependent write is conditioned on the
source still being at the version that triggered the run; once the source
has moved on the rest of the run is abandoned.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import config, reconcile, section_store
from .dependency_rules import DependencyRules, dependency_rules as default_rules
from .errors import NotFoundError, StaleSourceError
from .field_registry import SectionRegistry, registry as default_registry
from .paths import canonical_json, get_path
from ..util.logging import logger

UPDATED = "updated"
SKIPPED = "skipped"


@dataclass
class AtomicChange:
    field_path: str
    old_value: str
    new_value: str


@dataclass
class PropagationFailure:
    section_type: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"section_type": self.section_type, "error": self.error}


@dataclass
class PropagationReport:
    source_section: str
    source_version: Optional[int]
    changes: List[AtomicChange] = field(default_factory=list)
    updated_sections: List[str] = field(default_factory=list)
    skipped_sections: List[str] = field(default_factory=list)
    abandoned_sections: List[str] = field(default_factory=list)
    failures: List[PropagationFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_section": self.source_section,
            "source_version": self.source_version,
            "changes": [c.field_path for c in self.changes],
            "updated_sections": list(self.updated_sections),
            "skipped_sections": list(self.skipped_sections),
            "abandoned_sections": list(self.abandoned_sections),
            "failures": [f.to_dict() for f in self.failures],
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
        }


class StepTimeout(Exception):
    """A dependent update ran past its time budget."""
    pass


def detect_atomic_changes(section_type: str, old_document: Optional[Dict[str, Any]],
                          new_document: Optional[Dict[str, Any]],
                          rules: DependencyRules = None) -> List[AtomicChange]:
    """Atomic field paths whose non-empty string value differs between old and new."""
    rules = rules or default_rules
    if not old_document or not new_document:
        return []

    changes = []
    for path in rules.atomic_fields_for(section_type):
        old_value = get_path(old_document, path)
        new_value = get_path(new_document, path)
        if not isinstance(old_value, str) or not isinstance(new_value, str):
            continue
        if not old_value.strip() or not new_value.strip() or old_value == new_value:
            continue
        changes.append(AtomicChange(path, old_value, new_value))
    return changes


def _replace(text: str, change: AtomicChange) -> str:
    if change.old_value in change.new_value:
        # Occurrences already carrying the new value must not be replaced again
        parts = text.split(change.new_value)
        return change.new_value.join(part.replace(change.old_value, change.new_value) for part in parts)
    return text.replace(change.old_value, change.new_value)


def replace_in_strings(node: Any, changes: List[AtomicChange]) -> Any:
    """Copy of node with every old value replaced by its new value in string leaves."""
    if isinstance(node, str):
        for change in changes:
            node = _replace(node, change)
        return node
    if isinstance(node, dict):
        return {key: replace_in_strings(value, changes) for key, value in node.items()}
    if isinstance(node, list):
        return [replace_in_strings(item, changes) for item in node]
    return node


def _remaining(deadline: float, target: str) -> float:
    """Seconds left before the deadline; raises StepTimeout once it has passed."""
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise StepTimeout(f"Update of '{target}' exceeded its time budget")
    return remaining


def _update_dependent(project_id: str, source_section: str, source_version: int, target: str,
                      changes: List[AtomicChange], deadline: float,
                      registry: SectionRegistry, report: PropagationReport) -> str:
    try:
        document = section_store.get_current(project_id, target, registry)
    except NotFoundError:
        return SKIPPED

    new_content = replace_in_strings(document.content, changes)
    if canonical_json(new_content) == canonical_json(document.content):
        return SKIPPED

    # The lock wait is bounded by what is left of the step's time
    put = section_store.put_new(project_id, target, new_content,
                                expected_version=document.version,
                                registry=registry,
                                source_guard=(source_section, source_version),
                                timeout=_remaining(deadline, target))

    reconciliation = reconcile.reconcile_to_head(project_id, target, put.version, new_content, registry)
    for error in reconciliation.errors:
        report.warnings.append(f"{target}: {error}")
    return UPDATED


def propagate(project_id: str, section_type, old_document: Optional[Dict[str, Any]],
              new_document: Optional[Dict[str, Any]], source_version: Optional[int],
              rules: DependencyRules = None, registry: SectionRegistry = None,
              step_timeout: Optional[float] = None) -> PropagationReport:
    """Propagate atomic changes of one source write into its dependents.

    Never raises for a dependent: failures are isolated per section and
    recorded in the report.
    """
    rules = rules or default_rules
    registry = registry or default_registry
    source_section = registry.get_section(section_type).section_type
    step_timeout = step_timeout if step_timeout is not None else config.get_propagation_step_timeout()
    start_time = time.time()

    report = PropagationReport(source_section=source_section, source_version=source_version)
    report.changes = detect_atomic_changes(source_section, old_document, new_document, rules)

    if report.changes:
        dependents = [
            s for s in rules.dependents_for(source_section)
            if registry.is_known(s) and not registry.get_section(s).field_only
        ]
        for index, target in enumerate(dependents):
            deadline = time.monotonic() + step_timeout
            try:
                if section_store.current_version(project_id, source_section, registry) != source_version:
                    raise StaleSourceError(f"Source '{source_section}' is no longer at version {source_version}")
                outcome = _update_dependent(project_id, source_section, source_version, target,
                                            report.changes, deadline, registry, report)
            except StaleSourceError as e:
                report.abandoned_sections.extend(dependents[index:])
                logger.log_propagation_step(source_section, target, "abandoned",
                                            {"project_id": project_id, "reason": str(e)})
                break
            except Exception as e:
                report.failures.append(PropagationFailure(target, str(e)))
                logger.log_propagation_step(source_section, target, "failed",
                                            {"project_id": project_id, "error": str(e)})
                continue

            if outcome == UPDATED:
                report.updated_sections.append(target)
            else:
                report.skipped_sections.append(target)
            logger.log_propagation_step(source_section, target, outcome, {"project_id": project_id})

    end_time = time.time()
    report.duration_ms = round((end_time - start_time) * 1000, 2)
    status = "success"
    if report.abandoned_sections:
        status = "abandoned"
    elif report.failures:
        status = "partial"
    logger.log_propagation(project_id, source_section, start_time, end_time, status, {
        "source_version": source_version,
        "changes": [c.field_path for c in report.changes],
        "updated": report.updated_sections,
        "failures": len(report.failures),
    })
    return report
