#!/usr/bin/env python3
"""
Repair Alice worlds whose index variables lost their internal reference marker.

Usage:
    python fix_alice_world.py broken.a2w fixed.a2w
    python fix_alice_world.py --check broken.a2w
"""
import argparse
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Tuple

from alice_archive import extract_world, pack_world
from alice_element_data import (
    STATUS_BROKEN,
    STATUS_MALFORMED,
    find_element_data,
    fix_element_data_file,
    inspect_element_data,
    package_dir_for,
)
from alice_errors import InvalidInputPath, WorldRepairError

VERSION = "0.1.0"
SCRATCH_PREFIX = "alice-index-fix-"

BANNER = (
    "fix-alice-world comes with ABSOLUTELY NO WARRANTY and is distributed "
    "under the terms of the LGPL version 2.1."
)


def _report(quiet: bool, message: str) -> None:
    if not quiet:
        print(message)


def _check_input(input_path) -> Path:
    input_path = Path(input_path)
    if not input_path.is_file():
        raise InvalidInputPath(f"Path specified is not a valid world file: {input_path}")
    return input_path


def repair_world(input_path, output_path, quiet: bool = False) -> List[Tuple[str, str]]:
    """Fix every broken index property in a world and write the result.

    Returns (descriptor directory, new index reference) for each repaired
    descriptor. Nothing is written to output_path unless the whole run
    succeeds.
    """
    input_path = _check_input(input_path)
    repaired = []

    with tempfile.TemporaryDirectory(prefix=SCRATCH_PREFIX) as world_root:
        count = extract_world(input_path, world_root)
        _report(quiet, f"[OK] Extracted {count} files from {input_path}")

        descriptors = find_element_data(world_root)
        _report(quiet, f"Found {len(descriptors)} elementData files to check")

        for path in descriptors:
            reference = fix_element_data_file(path, world_root, quiet)
            if reference is not None:
                package_dir = package_dir_for(path, world_root) or "."
                repaired.append((package_dir, reference))
                _report(quiet, f"[OK] Fixed index in {package_dir}: {reference}")

        pack_world(world_root, output_path)

    _report(quiet, f"[OK] Wrote {output_path} ({len(repaired)} descriptors repaired)")
    return repaired


def check_world(input_path) -> Dict[str, List[str]]:
    """Find broken and malformed descriptors without repairing anything."""
    input_path = _check_input(input_path)
    problems = {STATUS_BROKEN: [], STATUS_MALFORMED: []}

    with tempfile.TemporaryDirectory(prefix=SCRATCH_PREFIX) as world_root:
        extract_world(input_path, world_root)
        for path in find_element_data(world_root):
            status = inspect_element_data(path)
            if status in problems:
                problems[status].append(package_dir_for(path, world_root) or ".")

    return problems


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(
        description="Mark index variables in an Alice world as internal references."
    )
    ap.add_argument("input", help="Broken world archive (.a2w)")
    ap.add_argument("output", nargs="?", help="Where to write the repaired world")
    ap.add_argument("--check", action="store_true", help="Only report problems, write nothing")
    ap.add_argument("--quiet", action="store_true", help="Only print errors")
    ap.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    args = ap.parse_args(argv)

    if not args.check and not args.output:
        ap.error("an output path is required unless --check is given")
    if args.check and args.output:
        ap.error("--check writes nothing, drop the output path")

    _report(args.quiet, BANNER)

    try:
        if args.check:
            problems = check_world(args.input)
            for package_dir in problems[STATUS_BROKEN]:
                print(f"[BROKEN] {package_dir}")
            for package_dir in problems[STATUS_MALFORMED]:
                print(f"[MALFORMED] {package_dir}")
            total = len(problems[STATUS_BROKEN]) + len(problems[STATUS_MALFORMED])
            _report(args.quiet, f"{total} problem descriptors found")
            return 1 if total else 0

        repair_world(args.input, args.output, quiet=args.quiet)
    except WorldRepairError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
