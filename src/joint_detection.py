"""
Pairwise joint detection and classification for planar components.

Runs in two phases so that pair evaluation never mutates shared state:

1. Evaluate every unordered pair (i < j, canonical id order), serially or
   on a thread pool. Each evaluation is side-effect free and returns a
   PairOutcome holding the events it produced.
2. Apply the JointClassified events to the components in one serial pass,
   in pair order. Each classified intersection adds exactly one joint to
   each of the two components.

Per pair:
- coplanar and overlapping -> merge candidate, no joints
- neither coplanar nor parallel -> intersection line, clip, classify
- otherwise -> no physical intersection
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from components import Component, ComponentId, ComponentSet, JointType
from detection_errors import (
    DegenerateGeometryError,
    DetectionCancelledError,
    DuplicateComponentError,
    EmptyInputError,
    NumericInstabilityError,
)
from detection_events import (
    CoplanarPairFound,
    DetectionComplete,
    DetectionEvent,
    DetectionStarted,
    EventLog,
    IntersectionFound,
    JointClassified,
    PairCompleted,
    PairSkipped,
    PairStarted,
)
from detection_results import (
    DetectionResult,
    SkippedPair,
    build_summary,
    classified_counts,
    summarize_component,
)
from geometry_predicates import (
    ILL_CONDITIONED_TOLERANCE,
    Line,
    are_coplanar,
    are_parallel,
    components_intersect,
    intersection_line,
    line_component_intersections,
    overlap_segment,
    segment_on_edge,
)
from vector_math import EPSILON, round_trip_error

logger = logging.getLogger(__name__)


@dataclass
class DetectionConfig:
    """Tolerances and execution options for a detection run."""
    epsilon: float = EPSILON
    ill_conditioned_tolerance: float = ILL_CONDITIONED_TOLERANCE
    planarity_tolerance: float = 1e-6     # max vertex distance from the plane
    strict: bool = False                  # instability aborts the run
    max_workers: Optional[int] = None     # > 1 evaluates pairs on threads
    check_transforms: bool = True


class PairRelation(Enum):
    INTERSECTING = "intersecting"            # line computed and clipped
    COPLANAR = "coplanar"                    # coplanar and overlapping
    COPLANAR_DISJOINT = "coplanar_disjoint"
    PARALLEL = "parallel"
    DISJOINT = "disjoint"                    # rejected by the broad phase
    SKIPPED = "skipped"                      # ill-conditioned plane solve


# (first on edge, second on edge) -> (first joint, second joint)
JOINT_DECISION_TABLE: Dict[Tuple[bool, bool], Tuple[JointType, JointType]] = {
    (True, True): (JointType.FINGER, JointType.FINGER),
    (True, False): (JointType.FINGER, JointType.HOLE),
    (False, True): (JointType.HOLE, JointType.FINGER),
    (False, False): (JointType.SLOT, JointType.SLOT),
}


def classify_edge_flags(
    first_on_edge: bool,
    second_on_edge: bool,
) -> Tuple[JointType, JointType]:
    return JOINT_DECISION_TABLE[(bool(first_on_edge), bool(second_on_edge))]


@dataclass(frozen=True)
class PairOutcome:
    """Everything one pair evaluation produced."""
    step: int
    first_id: ComponentId
    second_id: ComponentId
    relation: PairRelation
    events: Tuple[DetectionEvent, ...]
    reason: str = ""

    @property
    def joints(self) -> List[JointClassified]:
        return [e for e in self.events if isinstance(e, JointClassified)]


# ─── Validation ──────────────────────────────────────────────────────────────

def _canonical_order(components: ComponentSet) -> List[Component]:
    try:
        return sorted(components, key=lambda c: (type(c.id).__name__, c.id))
    except TypeError:
        return sorted(components, key=lambda c: (type(c.id).__name__, repr(c.id)))


def validate_component(component: Component, config: Optional[DetectionConfig] = None) -> None:
    """Raise DegenerateGeometryError if ``component`` cannot be evaluated."""
    if config is None:
        config = DetectionConfig()
    cid = component.id
    eps = config.epsilon

    if len(component.vertices) < 3:
        raise DegenerateGeometryError(
            cid, f"needs at least 3 vertices, has {len(component.vertices)}",
        )
    if component.normal.is_zero(eps):
        raise DegenerateGeometryError(cid, "normal has zero magnitude")
    if component.world_normal().is_zero(eps):
        raise DegenerateGeometryError(cid, "transform collapses the normal")

    if config.check_transforms:
        local = component.local_vertices()
        probe = np.vstack([local, np.zeros((1, 3)), np.eye(3)])
        world = component.transform.transform_points(probe)
        scale = max(1.0, float(np.max(np.abs(probe))), float(np.max(np.abs(world))))
        error = round_trip_error(component.transform, component.inverse_transform, probe)
        if error > eps * scale:
            raise DegenerateGeometryError(
                cid, f"inverse transform does not undo forward (error {error:.3e})",
            )

    off_plane = component.planarity_error()
    if off_plane > config.planarity_tolerance:
        raise DegenerateGeometryError(
            cid, f"vertices are not on the plane of the normal (off by {off_plane:.3e})",
        )

    outline = component.outline_2d()
    if not outline.is_valid:
        raise DegenerateGeometryError(cid, "boundary polygon is not simple")
    if outline.area <= eps:
        raise DegenerateGeometryError(cid, "boundary polygon has zero area")


def validate_component_set(
    components: ComponentSet,
    config: Optional[DetectionConfig] = None,
) -> List[Component]:
    """Validate the whole set and return it in canonical pair order.

    Raises:
        EmptyInputError: no components.
        DuplicateComponentError: two components share an id.
        DegenerateGeometryError: any component fails validation.
    """
    if config is None:
        config = DetectionConfig()
    if len(components) == 0:
        raise EmptyInputError()

    seen = set()
    for component in components:
        if component.id in seen:
            raise DuplicateComponentError(component.id)
        seen.add(component.id)

    for component in components:
        validate_component(component, config)
    return _canonical_order(components)


# ─── Pair evaluation (side-effect free) ──────────────────────────────────────

def classify_intersection(
    first: Component,
    second: Component,
    line: Line,
    eps: float = EPSILON,
) -> List[JointClassified]:
    """Clip ``line`` to both components and classify each shared sub-segment."""
    segments_first = line_component_intersections(line, first, eps)
    segments_second = line_component_intersections(line, second, eps)
    k = min(len(segments_first), len(segments_second))

    classified: List[JointClassified] = []
    for seg_first, seg_second in zip(segments_first[:k], segments_second[:k]):
        shared = overlap_segment(line, seg_first, seg_second, eps)
        if shared is None:
            logger.debug(
                "Sub-segments of %r and %r do not overlap; no contact",
                first.id, second.id,
            )
            continue
        local_first = shared.transformed(first.inverse_transform)
        local_second = shared.transformed(second.inverse_transform)
        first_type, second_type = classify_edge_flags(
            segment_on_edge(local_first, first, eps),
            segment_on_edge(local_second, second, eps),
        )
        classified.append(JointClassified(
            first_id=first.id,
            first_type=first_type,
            first_segment=local_first,
            second_id=second.id,
            second_type=second_type,
            second_segment=local_second,
        ))
    return classified


def evaluate_pair(
    first: Component,
    second: Component,
    step: int = 1,
    total_pairs: int = 1,
    config: Optional[DetectionConfig] = None,
) -> PairOutcome:
    """Evaluate one pair without touching either component.

    Raises:
        NumericInstabilityError: only in strict mode.
    """
    if config is None:
        config = DetectionConfig()
    eps = config.epsilon
    events: List[DetectionEvent] = [PairStarted(step, total_pairs, first.id, second.id)]
    reason = ""

    coplanar = are_coplanar(first, second, eps)
    if coplanar and components_intersect(first, second, eps):
        events.append(CoplanarPairFound(first.id, second.id))
        relation = PairRelation.COPLANAR
    elif coplanar:
        relation = PairRelation.COPLANAR_DISJOINT
    elif are_parallel(first, second, eps):
        relation = PairRelation.PARALLEL
    elif not components_intersect(first, second, eps):
        relation = PairRelation.DISJOINT
    else:
        try:
            line = intersection_line(first, second, eps, config.ill_conditioned_tolerance)
        except NumericInstabilityError as exc:
            if config.strict:
                raise
            logger.warning("Skipping pair %r/%r: %s", first.id, second.id, exc.detail)
            reason = exc.detail
            events.append(PairSkipped(first.id, second.id, reason))
            relation = PairRelation.SKIPPED
        else:
            events.append(IntersectionFound(first.id, second.id, line))
            events.extend(classify_intersection(first, second, line, eps))
            relation = PairRelation.INTERSECTING

    logger.debug("Pair %r/%r: %s", first.id, second.id, relation.value)
    events.append(PairCompleted(step, first.id, second.id, relation.value))
    return PairOutcome(
        step=step,
        first_id=first.id,
        second_id=second.id,
        relation=relation,
        events=tuple(events),
        reason=reason,
    )


def _evaluate_pairs(
    ordered: List[Component],
    config: DetectionConfig,
    cancel_event=None,
) -> List[PairOutcome]:
    """Evaluate all i < j pairs; cancellation is checked between pairs."""
    n = len(ordered)
    tasks = list(enumerate(
        ((i, j) for i in range(n) for j in range(i + 1, n)),
        start=1,
    ))
    total = len(tasks)

    def run(task) -> Optional[PairOutcome]:
        step, (i, j) = task
        if cancel_event is not None and cancel_event.is_set():
            return None
        return evaluate_pair(ordered[i], ordered[j], step, total, config)

    workers = config.max_workers
    if workers is None or workers <= 1:
        outcomes: List[PairOutcome] = []
        for task in tasks:
            outcome = run(task)
            if outcome is None:
                raise DetectionCancelledError(len(outcomes), total)
            outcomes.append(outcome)
        return outcomes

    with ThreadPoolExecutor(max_workers=workers) as executor:
        results = list(executor.map(run, tasks))
    done = [o for o in results if o is not None]
    if len(done) < total:
        raise DetectionCancelledError(len(done), total)
    return done


# ─── Merge phase ─────────────────────────────────────────────────────────────

def apply_outcomes(
    components_by_id: Dict[ComponentId, Component],
    outcomes: Sequence[PairOutcome],
) -> int:
    """Append every classified joint pair to its components. Returns pairs applied."""
    applied = 0
    for outcome in outcomes:
        for event in outcome.joints:
            components_by_id[event.first_id].add_joint(
                event.first_type, event.first_segment, event.second_id,
            )
            components_by_id[event.second_id].add_joint(
                event.second_type, event.second_segment, event.first_id,
            )
            applied += 1
    return applied


# ─── Public API ──────────────────────────────────────────────────────────────

def detect(
    components: ComponentSet,
    config: Optional[DetectionConfig] = None,
    cancel_event=None,
) -> DetectionResult:
    """Detect and classify joints between all pairs of components.

    Joints are appended to the components' buckets; call
    ``components.reset`` between runs on the same geometry.

    Args:
        components: The component set. Order does not affect the result.
        config: Tolerances and execution options.
        cancel_event: Optional object with ``is_set()`` (e.g.
            ``threading.Event``), checked between pairs.

    Returns:
        DetectionResult with per-component counts and the recorded events.
        Per-component counts reflect the buckets (joints from earlier runs
        included until ``reset``); ``summary.totals`` counts only the joints
        this run added.

    Raises:
        EmptyInputError, DuplicateComponentError, DegenerateGeometryError:
            before any pair is evaluated.
        NumericInstabilityError: in strict mode; no joints are applied.
        DetectionCancelledError: cancellation was requested; no joints
            are applied.
    """
    if config is None:
        config = DetectionConfig()

    ordered = validate_component_set(components, config)
    n = len(ordered)
    total_pairs = n * (n - 1) // 2
    logger.info("Detecting joints across %d components (%d pairs)", n, total_pairs)

    outcomes = _evaluate_pairs(ordered, config, cancel_event)
    apply_outcomes({c.id: c for c in ordered}, outcomes)

    coplanar_pairs = [
        (o.first_id, o.second_id) for o in outcomes if o.relation is PairRelation.COPLANAR
    ]
    skipped = [
        SkippedPair(o.first_id, o.second_id, o.reason)
        for o in outcomes if o.relation is PairRelation.SKIPPED
    ]
    summary = build_summary(
        components,
        total_pairs=total_pairs,
        classified_pairs=sum(1 for o in outcomes if o.joints),
        coplanar_pairs=len(coplanar_pairs),
        skipped_pairs=len(skipped),
        totals=classified_counts(e for o in outcomes for e in o.joints),
    )

    events: List[DetectionEvent] = [DetectionStarted(n, total_pairs)]
    for outcome in outcomes:
        events.extend(outcome.events)
    events.append(DetectionComplete(summary))

    logger.info(
        "Detection complete: %d finger, %d hole, %d slot joints (%d pairs skipped)",
        summary.totals.finger, summary.totals.hole, summary.totals.slot,
        summary.skipped_pairs,
    )
    return DetectionResult(
        components=[summarize_component(c) for c in components],
        summary=summary,
        coplanar_pairs=coplanar_pairs,
        skipped=skipped,
        events=EventLog(events),
    )


def iter_detection_events(
    components: ComponentSet,
    config: Optional[DetectionConfig] = None,
    cancel_event=None,
) -> Iterator[DetectionEvent]:
    """Lazily run detection and yield its events in pair-processing order.

    Detection starts on the first ``next()``; errors surface there. For
    repeated playback keep ``detect(...).events`` and call ``replay()``.
    """
    result = detect(components, config, cancel_event)
    yield from result.events.replay()
