"""End-to-end tests for scripts/detect_joints.py."""
import json
import subprocess
import sys
from pathlib import Path

SCRIPT = Path(__file__).parent.parent / "scripts" / "detect_joints.py"


def run_cli(*args):
    return subprocess.run(
        [sys.executable, str(SCRIPT), *args],
        capture_output=True,
        text=True,
        timeout=120,
    )


def test_demo_table():
    proc = run_cli("--demo", "axes")
    assert proc.returncode == 0, proc.stderr
    total_row = next(line for line in proc.stdout.splitlines() if line.startswith("total"))
    assert total_row.split() == ["total", "6", "0", "0"]


def test_demo_json_with_events():
    proc = run_cli("--demo", "box", "--json", "--events", "--workers", "2")
    assert proc.returncode == 0, proc.stderr
    data = json.loads(proc.stdout)
    assert data["summary"]["totals"]["finger"] == 24
    assert data["events"][0]["event"] == "detection_started"
    assert data["events"][-1]["event"] == "complete"


def test_mesh_input(box_mesh_file):
    proc = run_cli("--mesh", box_mesh_file)
    assert proc.returncode == 0, proc.stderr
    assert "box.stl" in proc.stdout
    total_row = next(line for line in proc.stdout.splitlines() if line.startswith("total"))
    assert total_row.split() == ["total", "24", "0", "0"]


def test_missing_mesh_fails(tmp_path):
    proc = run_cli("--mesh", str(tmp_path / "nope.stl"))
    assert proc.returncode != 0
    assert "not found" in proc.stderr


def test_detection_error_exits_nonzero(box_mesh_file):
    # Every facet of the 100mm box is filtered out, leaving nothing to detect
    proc = run_cli("--mesh", box_mesh_file, "--min-area", "1e9")
    assert proc.returncode == 1
    assert "Detection failed" in proc.stderr
    assert "No components to process" in proc.stderr
