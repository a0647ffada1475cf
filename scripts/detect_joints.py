#!/usr/bin/env python3
"""
Detect and classify joints between the planar faces of a scene.

Reads a mesh (each planar facet becomes a component) or builds a demo
scene, runs pairwise detection, and prints finger/hole/slot counts per
component.

Usage:
    python scripts/detect_joints.py --demo axes
    python scripts/detect_joints.py --demo box --events
    python scripts/detect_joints.py --mesh model.stl --workers 4 --json
"""
import sys
import json
import argparse
import logging
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import trimesh

from detection_errors import DetectionError
from detection_results import format_table
from joint_detection import DetectionConfig, detect
from mesh_components import DEMO_SCENES, components_from_mesh


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Detect finger/hole/slot joints between planar components.",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--mesh", default=None,
        help="Path to input mesh file (STL, OBJ, GLB, PLY)",
    )
    source.add_argument(
        "--demo", default=None, choices=sorted(DEMO_SCENES),
        help="Use a built-in demo scene instead of a mesh (default: axes)",
    )
    parser.add_argument(
        "--size", type=float, default=1.0,
        help="Edge length for demo scenes (default: 1.0)",
    )
    parser.add_argument(
        "--min-area", type=float, default=0.0,
        help="Skip mesh facets with area at or below this (default: 0)",
    )
    parser.add_argument(
        "--strict", action="store_true",
        help="Fail the run on ill-conditioned pairs instead of skipping them",
    )
    parser.add_argument(
        "--workers", type=int, default=1,
        help="Threads for pair evaluation (default: 1)",
    )
    parser.add_argument(
        "--events", action="store_true",
        help="Print the recorded event log after the table",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print the result as JSON instead of a table",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.mesh:
        mesh_path = Path(args.mesh)
        if not mesh_path.is_file():
            parser.error(f"Input file not found: {mesh_path}")
        mesh = trimesh.load(str(mesh_path), force="mesh")
        components = components_from_mesh(mesh, min_area=args.min_area)
        title = f"Joints for {mesh_path.name}"
    else:
        scene = args.demo or "axes"
        components = DEMO_SCENES[scene](args.size)
        title = f"Joints for demo scene '{scene}'"

    config = DetectionConfig(strict=args.strict, max_workers=args.workers)
    try:
        result = detect(components, config)
    except DetectionError as exc:
        print(f"Detection failed: {exc}", file=sys.stderr)
        return 1

    if args.json:
        payload = result.to_dict()
        if args.events:
            payload["events"] = result.events.to_dicts()
        print(json.dumps(payload, indent=2, default=str))
        return 0

    print(format_table(result, title=title))
    for warning in result.warnings:
        print(f"WARNING: {warning}")
    if args.events:
        print()
        for event in result.events.replay():
            print(json.dumps(event.to_dict(), default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
