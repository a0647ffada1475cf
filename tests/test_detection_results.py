"""Tests for detection_results.py: summaries, tables and serialization."""
import json

import pytest

from components import JointCounts
from detection_events import JointClassified
from detection_results import classified_counts, format_table, total_counts
from joint_detection import detect


class TestDetectionResult:
    def test_counts_lookup(self, demo_scene):
        result = detect(demo_scene)
        assert result.counts_by_id() == {
            1: JointCounts(finger=2),
            2: JointCounts(finger=2),
            3: JointCounts(finger=2),
        }
        with pytest.raises(KeyError):
            result.counts_for(99)

    def test_totals_match_components(self, demo_scene):
        result = detect(demo_scene)
        assert result.totals == total_counts(demo_scene)

    def test_to_dict_is_json_ready(self, shared_edge_pair):
        result = detect(shared_edge_pair)
        data = json.loads(json.dumps(result.to_dict()))
        first = data["components"][0]
        assert first["id"] == "a"
        assert first["finger_joints"] == 1
        assert first["hole_joints"] == 0
        assert first["joints"][0]["partner"] == "b"
        assert data["summary"]["totals"] == {"finger": 2, "hole": 0, "slot": 0}
        assert data["warnings"] == []

    def test_classified_counts_both_sides(self, shared_edge_pair):
        result = detect(shared_edge_pair)
        events = result.events.of_type(JointClassified)
        assert classified_counts(events) == JointCounts(finger=2)
        assert classified_counts([]) == JointCounts()

    def test_summary_is_snapshot(self, demo_scene):
        """Later runs on the same components do not change an earlier result."""
        result = detect(demo_scene)
        detect(demo_scene)
        assert result.counts_for(1) == JointCounts(finger=2)


class TestFormatTable:
    def test_table_rows(self, demo_scene):
        table = format_table(detect(demo_scene), title="Demo")
        lines = table.splitlines()
        assert lines[0] == "Demo"
        assert lines[1].split() == ["component", "finger", "hole", "slot"]
        assert lines[3].split() == ["1", "2", "0", "0"]
        total_row = next(line for line in lines if line.startswith("total"))
        assert total_row.split() == ["total", "6", "0", "0"]
        assert lines[-1].startswith("pairs: 3 total, 3 classified")

    def test_total_row_sums_component_rows(self, demo_scene):
        detect(demo_scene)
        table = format_table(detect(demo_scene))
        total_row = next(line for line in table.splitlines() if line.startswith("total"))
        assert total_row.split() == ["total", "12", "0", "0"]

    def test_without_title(self, shared_edge_pair):
        table = format_table(detect(shared_edge_pair))
        assert table.splitlines()[0].startswith("component")
