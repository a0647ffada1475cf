"""Tests for joint_detection.py: pair classification, validation and run modes."""
import random
import threading

import pytest

from components import JointCounts, JointType, create_component, polygon_component, reset
from detection_errors import (
    DegenerateGeometryError, DetectionCancelledError, DetectionError,
    DuplicateComponentError, EmptyInputError, NumericInstabilityError,
)
from detection_events import (
    CoplanarPairFound, DetectionComplete, DetectionStarted, IntersectionFound,
    JointClassified, PairCompleted, PairSkipped, PairStarted,
)
from joint_detection import (
    JOINT_DECISION_TABLE, DetectionConfig, PairRelation, classify_edge_flags,
    detect, evaluate_pair, iter_detection_events, validate_component,
)
from mesh_components import create_demo_scene
from vector_math import Transform, Vector

from conftest import xy_square, xz_rect


def _tilted_square(component_id, angle):
    c = xy_square(component_id, x0=-1.0, y0=-1.0, size=2.0)
    return c.set_transform(Transform.rotation(angle, Vector(1, 0, 0)))


def _unstable_scene():
    """'a' and 'b' are almost parallel; 'c' meets both along the x axis."""
    return [
        xy_square("a", x0=-1.0, y0=-1.0, size=2.0),
        _tilted_square("b", 7e-5),
        xz_rect("c", 0.0, 1.0, 0.0, 1.0),
    ]


class _CancelAfter:
    """Cancellation signal that trips after ``n`` checks."""

    def __init__(self, n):
        self.n = n
        self.calls = 0
        self._lock = threading.Lock()

    def is_set(self):
        with self._lock:
            self.calls += 1
            return self.calls > self.n


class TestDecisionTable:
    @pytest.mark.parametrize("flags, expected", [
        ((True, True), (JointType.FINGER, JointType.FINGER)),
        ((True, False), (JointType.FINGER, JointType.HOLE)),
        ((False, True), (JointType.HOLE, JointType.FINGER)),
        ((False, False), (JointType.SLOT, JointType.SLOT)),
    ])
    def test_table(self, flags, expected):
        assert classify_edge_flags(*flags) == expected
        assert JOINT_DECISION_TABLE[flags] == expected


class TestClassification:
    def test_shared_edge_is_finger_finger(self, shared_edge_pair):
        result = detect(shared_edge_pair)
        assert result.counts_for("a") == JointCounts(finger=1)
        assert result.counts_for("b") == JointCounts(finger=1)
        a, b = shared_edge_pair
        assert a.fingers[0].partner_id == "b"
        assert b.fingers[0].partner_id == "a"

    def test_edge_into_face_is_finger_hole(self):
        tab = xz_rect("a", -0.5, 0.5, 0.0, 1.0)
        plate = xy_square("b", x0=-1.0, y0=-1.0, size=2.0)
        result = detect([tab, plate])
        assert result.counts_for("a") == JointCounts(finger=1)
        assert result.counts_for("b") == JointCounts(hole=1)

    def test_face_receives_edge_is_hole_finger(self):
        plate = xy_square("a", x0=-1.0, y0=-1.0, size=2.0)
        tab = xz_rect("b", -0.5, 0.5, 0.0, 1.0)
        result = detect([plate, tab])
        assert result.counts_for("a") == JointCounts(hole=1)
        assert result.counts_for("b") == JointCounts(finger=1)

    def test_interpenetrating_is_slot_slot(self):
        a = xy_square("a", x0=-1.0, y0=-1.0, size=2.0)
        b = xz_rect("b", 0.0, 2.0, -1.0, 1.0)
        result = detect([a, b])
        assert result.counts_for("a") == JointCounts(slot=1)
        assert result.counts_for("b") == JointCounts(slot=1)

    def test_joint_segments_are_local(self):
        a = xy_square("a", size=2.0).set_transform(Transform.translation(Vector(0, 0, 5)))
        b = xz_rect("b", 0.0, 2.0, 5.0, 7.0)
        detect([a, b])
        seg = a.fingers[0].segment
        # The shared edge sits at z = 5 in the world but z = 0 locally
        assert seg.start.z == pytest.approx(0.0)
        assert seg.end.z == pytest.approx(0.0)
        assert seg.length == pytest.approx(2.0)

    def test_coplanar_overlap_is_merge_candidate(self):
        result = detect([xy_square("a"), xy_square("b", x0=0.5)])
        assert result.totals == JointCounts()
        assert result.coplanar_pairs == [("a", "b")]
        assert result.summary.coplanar_pairs == 1
        assert len(result.events.of_type(CoplanarPairFound)) == 1

    def test_coplanar_apart_is_ignored(self):
        result = detect([xy_square("a"), xy_square("b", x0=3.0)])
        assert result.totals == JointCounts()
        assert result.coplanar_pairs == []

    def test_parallel_planes_produce_nothing(self):
        result = detect([xy_square("a"), xy_square("b", z=1.0)])
        assert result.totals == JointCounts()
        assert result.events.of_type(IntersectionFound) == []
        completed = result.events.of_type(PairCompleted)
        assert completed[0].relation == PairRelation.PARALLEL.value

    def test_far_apart_rejected_by_broad_phase(self):
        result = detect([xy_square("a"), xz_rect("b", 5.0, 6.0, -1.0, 1.0)])
        assert result.totals == JointCounts()
        completed = result.events.of_type(PairCompleted)
        assert completed[0].relation == PairRelation.DISJOINT.value

    def test_demo_scene_all_fingers(self, demo_scene):
        result = detect(demo_scene)
        for cid in (1, 2, 3):
            assert result.counts_for(cid) == JointCounts(finger=2)
        assert result.summary.total_pairs == 3
        assert result.pairs_evaluated == 3
        assert result.summary.classified_pairs == 3
        assert result.totals.total == 6

    def test_rigid_motion_keeps_classification(self):
        motion = Transform.translation(Vector(3, -2, 5)) @ Transform.rotation(
            0.9, Vector(1, 1, 0.5),
        )
        scene = create_demo_scene()
        for c in scene:
            c.set_transform(motion)
        result = detect(scene)
        for cid in (1, 2, 3):
            assert result.counts_for(cid) == JointCounts(finger=2)

    def test_each_classification_adds_one_joint_per_side(self, demo_scene):
        result = detect(demo_scene)
        classified = result.events.of_type(JointClassified)
        assert 2 * len(classified) == result.totals.total


class TestEvaluatePair:
    def test_does_not_mutate_components(self, shared_edge_pair):
        a, b = shared_edge_pair
        outcome = evaluate_pair(a, b)
        assert outcome.relation is PairRelation.INTERSECTING
        assert len(outcome.joints) == 1
        assert a.joint_counts() == JointCounts()
        assert b.joint_counts() == JointCounts()

    def test_event_sequence(self, shared_edge_pair):
        outcome = evaluate_pair(*shared_edge_pair, step=2, total_pairs=5)
        kinds = [type(e) for e in outcome.events]
        assert kinds == [PairStarted, IntersectionFound, JointClassified, PairCompleted]
        assert outcome.events[0].step == 2
        assert outcome.events[0].total_pairs == 5


class TestValidation:
    def test_empty_input(self):
        with pytest.raises(EmptyInputError):
            detect([])

    def test_empty_input_surfaces_on_first_next(self):
        events = iter_detection_events([])
        with pytest.raises(EmptyInputError):
            next(events)

    def test_too_few_vertices(self):
        c = create_component("bad").add_vertex(0, 0, 0).add_vertex(1, 0, 0)
        with pytest.raises(DegenerateGeometryError) as info:
            detect([c, xy_square("ok")])
        assert info.value.component_id == "bad"

    def test_zero_normal(self):
        c = xy_square("bad").set_normal(0, 0, 0)
        with pytest.raises(DegenerateGeometryError):
            validate_component(c)

    def test_non_planar(self):
        c = xy_square("bad").add_vertex(0.5, 0.5, 0.25)
        with pytest.raises(DegenerateGeometryError):
            validate_component(c)

    def test_self_intersecting_outline(self):
        bowtie = polygon_component(
            "bad", [(0, 0, 0), (1, 1, 0), (1, 0, 0), (0, 1, 0)], (0, 0, 1),
        )
        with pytest.raises(DegenerateGeometryError):
            validate_component(bowtie)

    def test_inverse_must_undo_forward(self):
        c = xy_square("bad").set_transform(
            Transform.translation(Vector(1, 0, 0)), inverse=Transform.identity(),
        )
        with pytest.raises(DegenerateGeometryError):
            validate_component(c)
        # Opting out of the check lets it through
        validate_component(c, DetectionConfig(check_transforms=False))

    def test_duplicate_ids(self):
        with pytest.raises(DuplicateComponentError):
            detect([xy_square("a"), xy_square("a", x0=5.0)])

    def test_errors_share_base_class(self):
        for exc in (EmptyInputError, DegenerateGeometryError, DuplicateComponentError,
                    NumericInstabilityError, DetectionCancelledError):
            assert issubclass(exc, DetectionError)

    def test_failed_validation_applies_nothing(self, shared_edge_pair):
        bad = create_component("z")
        with pytest.raises(DegenerateGeometryError):
            detect(shared_edge_pair + [bad])
        assert all(c.joint_counts() == JointCounts() for c in shared_edge_pair)


class TestNumericInstability:
    def test_unstable_pair_skipped_with_warning(self):
        scene = _unstable_scene()
        result = detect(scene)
        assert result.summary.skipped_pairs == 1
        assert result.skipped[0].first_id == "a"
        assert result.skipped[0].second_id == "b"
        assert len(result.warnings) == 1
        warnings = result.events.warnings()
        assert len(warnings) == 1
        assert warnings[0].kind == "warning"
        # Other pairs are still classified
        assert result.counts_for("c") == JointCounts(finger=2)
        assert result.counts_for("a") == JointCounts(hole=1)

    def test_strict_mode_aborts_without_joints(self):
        scene = _unstable_scene()
        with pytest.raises(NumericInstabilityError):
            detect(scene, DetectionConfig(strict=True))
        assert all(c.joint_counts() == JointCounts() for c in scene)

    def test_strict_mode_parallel_workers(self):
        scene = _unstable_scene()
        with pytest.raises(NumericInstabilityError):
            detect(scene, DetectionConfig(strict=True, max_workers=3))
        assert all(c.joint_counts() == JointCounts() for c in scene)


class TestCancellation:
    def test_cancel_before_start(self, shared_edge_pair):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(DetectionCancelledError) as info:
            detect(shared_edge_pair, cancel_event=cancel)
        assert info.value.pairs_evaluated == 0
        assert all(c.joint_counts() == JointCounts() for c in shared_edge_pair)

    def test_cancel_mid_run(self, demo_scene):
        with pytest.raises(DetectionCancelledError) as info:
            detect(demo_scene, cancel_event=_CancelAfter(1))
        assert info.value.pairs_evaluated == 1
        assert info.value.total_pairs == 3
        assert all(c.joint_counts() == JointCounts() for c in demo_scene)

    def test_cancel_with_workers(self, demo_scene):
        with pytest.raises(DetectionCancelledError):
            detect(demo_scene, DetectionConfig(max_workers=4), cancel_event=_CancelAfter(1))
        assert all(c.joint_counts() == JointCounts() for c in demo_scene)

    def test_unset_event_runs_to_completion(self, demo_scene):
        result = detect(demo_scene, cancel_event=threading.Event())
        assert result.totals.finger == 6


class TestDeterminism:
    def test_rerun_after_reset_is_identical(self, demo_scene):
        first = detect(demo_scene)
        reset(demo_scene)
        second = detect(demo_scene)
        assert first.counts_by_id() == second.counts_by_id()
        assert first.events.to_dicts() == second.events.to_dicts()

    def test_joints_accumulate_without_reset(self, demo_scene):
        detect(demo_scene)
        result = detect(demo_scene)
        assert result.counts_for(1) == JointCounts(finger=4)

    def test_summary_totals_count_this_run_only(self, demo_scene):
        detect(demo_scene)
        result = detect(demo_scene)
        assert result.totals == JointCounts(finger=6)
        assert result.events[-1].summary.totals == JointCounts(finger=6)

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_input_order_does_not_matter(self, seed):
        baseline = detect(create_demo_scene())
        shuffled = create_demo_scene()
        random.Random(seed).shuffle(shuffled)
        result = detect(shuffled)
        assert result.counts_by_id() == baseline.counts_by_id()
        assert result.events.to_dicts() == baseline.events.to_dicts()
        # Summaries follow the caller's order
        assert [c.component_id for c in result.components] == [c.id for c in shuffled]

    def test_workers_match_serial(self, box_components):
        serial = detect(box_components)
        reset(box_components)
        threaded = detect(box_components, DetectionConfig(max_workers=4))
        assert threaded.counts_by_id() == serial.counts_by_id()
        assert threaded.events.to_dicts() == serial.events.to_dicts()

    def test_mixed_id_types(self):
        scene = [xy_square(2), xz_rect("b", 0.0, 1.0, 0.0, 1.0)]
        result = detect(scene)
        assert result.counts_for(2) == JointCounts(finger=1)


class TestEvents:
    def test_log_shape(self, demo_scene):
        log = detect(demo_scene).events
        assert isinstance(log[0], DetectionStarted)
        assert log[0].component_count == 3
        assert isinstance(log[-1], DetectionComplete)
        assert log[-1].summary.totals.finger == 6
        steps = [e.step for e in log.of_type(PairStarted)]
        assert steps == [1, 2, 3]

    def test_pairs_are_not_interleaved(self, demo_scene):
        log = detect(demo_scene).events
        open_pair = None
        for event in log:
            if isinstance(event, PairStarted):
                assert open_pair is None
                open_pair = event.step
            elif isinstance(event, PairCompleted):
                assert event.step == open_pair
                open_pair = None

    def test_replay_is_repeatable(self, demo_scene):
        log = detect(demo_scene).events
        assert list(log.replay()) == list(log.replay())
        joints_only = list(log.replay(kinds=[JointClassified]))
        assert len(joints_only) == 3

    def test_iter_matches_detect(self):
        streamed = list(iter_detection_events(create_demo_scene()))
        recorded = list(detect(create_demo_scene()).events)
        assert [e.to_dict() for e in streamed] == [e.to_dict() for e in recorded]

    def test_event_to_dict(self, shared_edge_pair):
        log = detect(shared_edge_pair).events
        data = log.of_type(JointClassified)[0].to_dict()
        assert data["event"] == "joint_classified"
        assert data["first_type"] == "finger"
        assert data["first_id"] == "a"
        assert set(data["first_segment"]) == {"start", "end"}
        assert log[-1].to_dict()["event"] == "complete"

    def test_warning_event_to_dict(self):
        log = detect(_unstable_scene()).events
        data = log.of_type(PairSkipped)[0].to_dict()
        assert data["event"] == "warning"
        assert "reason" in data
