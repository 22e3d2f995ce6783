"""
Dependency Rules - which sections embed content from which other sections.

Section-level map: source section -> dependent sections.
Atomic fields: per source section, the field paths whose value changes can be
find-and-replaced into dependents without regeneration.
Field-level impact: targeted "what will this edit affect" answers for previews.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

DEPENDENCY_MAP: Dict[str, List[str]] = {
    "idealClient": ["message", "story", "offer", "vsl", "funnelCopy", "emails",
                    "facebookAds", "setterScript", "salesScripts", "bio"],
    "message": ["story", "offer", "vsl", "funnelCopy", "emails", "facebookAds",
                "setterScript", "salesScripts", "bio"],
    "story": ["vsl", "funnelCopy", "bio"],
    "offer": ["vsl", "funnelCopy", "salesScripts", "emails"],
    "leadMagnet": ["funnelCopy", "emails", "facebookAds", "setterScript", "vsl"],
    "vsl": ["funnelCopy"],
    "bio": ["funnelCopy"],
}

ATOMIC_FIELDS: Dict[str, List[str]] = {
    "leadMagnet": ["mainTitle", "freeGift.title"],
    "offer": ["offerName", "tier1RecommendedPrice"],
    "bio": ["name", "founderName"],
}

FIELD_DEPENDENCIES: Dict[str, Dict] = {
    "offer.offerName": {
        "affected_sections": ["setterScript", "salesScripts", "emails", "vsl", "funnelCopy"],
        "reason": "Uses your offer/program name",
    },
    "leadMagnet.mainTitle": {
        "affected_sections": ["facebookAds", "emails", "funnelCopy", "setterScript"],
        "reason": "References your lead magnet title",
    },
    "message.oneLineMessage": {
        "affected_sections": ["bio", "funnelCopy", "facebookAds"],
        "reason": "Uses your one-line message",
    },
    "offer.sevenStepBlueprint": {
        "affected_sections": ["vsl", "salesScripts", "funnelCopy"],
        "reason": "References your 7-step blueprint",
    },
    "story.bigIdea": {
        "affected_sections": ["vsl", "bio", "funnelCopy"],
        "reason": "Uses your core transformation story",
    },
}


@dataclass
class AffectedSection:
    section_type: str
    reason: str


@dataclass
class DependencyImpact:
    section_type: str
    field_id: Optional[str]
    is_field_level: bool = False
    affected: List[AffectedSection] = field(default_factory=list)

    @property
    def has_impact(self) -> bool:
        return bool(self.affected)


class DependencyRules:
    """Static dependency tables with lookups."""

    def __init__(self, dependency_map: Dict[str, List[str]] = None,
                 atomic_fields: Dict[str, List[str]] = None,
                 field_dependencies: Dict[str, Dict] = None):
        self.dependency_map = dict(DEPENDENCY_MAP if dependency_map is None else dependency_map)
        self.atomic_fields = dict(ATOMIC_FIELDS if atomic_fields is None else atomic_fields)
        self.field_dependencies = dict(FIELD_DEPENDENCIES if field_dependencies is None else field_dependencies)

    def dependents_for(self, section_type: str) -> List[str]:
        return [s for s in self.dependency_map.get(section_type, []) if s != section_type]

    def atomic_fields_for(self, section_type: str) -> List[str]:
        return list(self.atomic_fields.get(section_type, []))

    def impact(self, section_type: str, field_id: Optional[str] = None) -> DependencyImpact:
        """Sections affected by an edit, field-level when known, otherwise section-level."""
        result = DependencyImpact(section_type=section_type, field_id=field_id)

        if field_id:
            dependency = self.field_dependencies.get(f"{section_type}.{field_id}")
            if dependency:
                result.is_field_level = True
                for affected in dependency["affected_sections"]:
                    if affected != section_type:
                        result.affected.append(AffectedSection(affected, dependency["reason"]))

        if not result.is_field_level:
            for affected in self.dependents_for(section_type):
                result.affected.append(AffectedSection(affected, f"Depends on {section_type}"))

        return result

    def edges(self) -> List[Tuple[str, str]]:
        return [(source, target) for source, targets in self.dependency_map.items() for target in targets]


# Global rule set
dependency_rules = DependencyRules()


def find_cycles(edges: Iterable[Tuple[str, str]]) -> List[List[str]]:
    """Return the cycles of a directed section graph (empty when acyclic).

    Meant to be run over the dependency and sync tables together, offline;
    the propagator and the sync engine do not detect cycles at runtime.
    """
    graph: Dict[str, List[str]] = {}
    for source, target in edges:
        graph.setdefault(source, []).append(target)
        graph.setdefault(target, [])

    cycles = []
    state: Dict[str, int] = {}  # 1 visiting, 2 done
    stack: List[str] = []

    def visit(node: str) -> None:
        state[node] = 1
        stack.append(node)
        for nxt in graph[node]:
            if state.get(nxt) == 1:
                cycles.append(stack[stack.index(nxt):] + [nxt])
            elif nxt not in state:
                visit(nxt)
        stack.pop()
        state[node] = 2

    for node in sorted(graph):
        if node not in state:
            visit(node)
    return cycles
