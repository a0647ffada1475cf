"""
Per-component and run-level joint tallies.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from components import Component, ComponentId, Joint, JointCounts, JointType
from detection_events import EventLog, JointClassified


@dataclass(frozen=True)
class ComponentSummary:
    component_id: ComponentId
    counts: JointCounts
    joints: Tuple[Joint, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.component_id,
            "finger_joints": self.counts.finger,
            "hole_joints": self.counts.hole,
            "slot_joints": self.counts.slot,
            "joints": [j.to_dict() for j in self.joints],
        }


@dataclass(frozen=True)
class SkippedPair:
    first_id: ComponentId
    second_id: ComponentId
    reason: str


@dataclass(frozen=True)
class RunSummary:
    """Run-level counts, also carried by the final ``complete`` event."""
    component_count: int
    total_pairs: int
    classified_pairs: int
    coplanar_pairs: int
    skipped_pairs: int
    totals: JointCounts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component_count": self.component_count,
            "total_pairs": self.total_pairs,
            "classified_pairs": self.classified_pairs,
            "coplanar_pairs": self.coplanar_pairs,
            "skipped_pairs": self.skipped_pairs,
            "totals": self.totals.to_dict(),
        }


@dataclass
class DetectionResult:
    """Outcome of a batch detection run.

    ``components`` follows the caller's input order; pairs were processed
    in canonical id order.
    """
    components: List[ComponentSummary]
    summary: RunSummary
    coplanar_pairs: List[Tuple[ComponentId, ComponentId]] = field(default_factory=list)
    skipped: List[SkippedPair] = field(default_factory=list)
    events: EventLog = field(default_factory=EventLog)

    @property
    def totals(self) -> JointCounts:
        return self.summary.totals

    @property
    def pairs_evaluated(self) -> int:
        return self.summary.total_pairs

    @property
    def warnings(self) -> List[str]:
        return [
            f"Skipped {s.first_id!r}/{s.second_id!r}: {s.reason}" for s in self.skipped
        ]

    def counts_by_id(self) -> Dict[ComponentId, JointCounts]:
        return {c.component_id: c.counts for c in self.components}

    def counts_for(self, component_id: ComponentId) -> JointCounts:
        for c in self.components:
            if c.component_id == component_id:
                return c.counts
        raise KeyError(component_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "components": [c.to_dict() for c in self.components],
            "summary": self.summary.to_dict(),
            "coplanar_pairs": [list(p) for p in self.coplanar_pairs],
            "skipped": [
                {"first": s.first_id, "second": s.second_id, "reason": s.reason}
                for s in self.skipped
            ],
            "warnings": self.warnings,
        }


def summarize_component(component: Component) -> ComponentSummary:
    return ComponentSummary(
        component_id=component.id,
        counts=component.joint_counts(),
        joints=tuple(component.joints()),
    )


def total_counts(components: Sequence[Component]) -> JointCounts:
    totals = JointCounts()
    for component in components:
        totals = totals + component.joint_counts()
    return totals


def classified_counts(events: Iterable[JointClassified]) -> JointCounts:
    """Joints added by a set of classified pairs, both sides counted."""
    counts = {JointType.FINGER: 0, JointType.HOLE: 0, JointType.SLOT: 0}
    for event in events:
        counts[event.first_type] += 1
        counts[event.second_type] += 1
    return JointCounts(
        finger=counts[JointType.FINGER],
        hole=counts[JointType.HOLE],
        slot=counts[JointType.SLOT],
    )


def build_summary(
    components: Sequence[Component],
    total_pairs: int,
    classified_pairs: int,
    coplanar_pairs: int,
    skipped_pairs: int,
    totals: Optional[JointCounts] = None,
) -> RunSummary:
    """Run summary; ``totals`` defaults to everything in the buckets."""
    return RunSummary(
        component_count=len(components),
        total_pairs=total_pairs,
        classified_pairs=classified_pairs,
        coplanar_pairs=coplanar_pairs,
        skipped_pairs=skipped_pairs,
        totals=total_counts(components) if totals is None else totals,
    )


def format_table(result: DetectionResult, title: Optional[str] = None) -> str:
    """Plain-text per-component joint table."""
    lines = []
    if title:
        lines.append(title)
    header = f"{'component':<16} {'finger':>7} {'hole':>7} {'slot':>7}"
    lines.append(header)
    lines.append("-" * len(header))
    for c in result.components:
        lines.append(
            f"{str(c.component_id):<16} {c.counts.finger:>7} "
            f"{c.counts.hole:>7} {c.counts.slot:>7}"
        )
    totals = JointCounts()
    for c in result.components:
        totals = totals + c.counts
    lines.append("-" * len(header))
    lines.append(f"{'total':<16} {totals.finger:>7} {totals.hole:>7} {totals.slot:>7}")
    s = result.summary
    lines.append(
        f"pairs: {s.total_pairs} total, {s.classified_pairs} classified, "
        f"{s.coplanar_pairs} coplanar, {s.skipped_pairs} skipped"
    )
    return "\n".join(lines)
