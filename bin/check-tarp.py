#!/usr/bin/env python3
"""
Tarp Gate Checker

Lists every function declared in the given Go packages that no test calls
directly. Such functions may still show up as covered, but only because
other code reaches them.

Exit code 0 = pass, 1 = fail (with --fail-on-found, or on errors)
"""

import sys
from pathlib import Path
import argparse

from tarp_common import TarpError, save_report
from go_scan import analyze_dirs


def check_tarp(report, show_called: bool = False) -> bool:
    """Print the tarp summary. Returns True if every function is called directly."""
    uncalled = report.uncalled
    called = [d for d in report.declared if d.name in report.called]

    print("=" * 80)
    print("TARP CHECK: FUNCTIONS WITHOUT DIRECT TEST CALLS")
    print("=" * 80)
    print()

    if uncalled:
        print("NOT DIRECTLY CALLED:")
        for d in uncalled:
            print(f"  ✗ {d.source_file}:{d.line}  {d.qualified_name}")
        print()

    if show_called and called:
        print("DIRECTLY CALLED:")
        for d in sorted(called, key=lambda d: (d.source_file, d.line)):
            print(f"  ✓ {d.source_file}:{d.line}  {d.qualified_name}")
        print()

    print("=" * 80)
    print(f"Results: {len(called)} called directly, {len(uncalled)} not called directly")
    if uncalled:
        print("✗ SOME FUNCTIONS ARE ONLY COVERED INDIRECTLY (OR NOT AT ALL)")
    else:
        print("✓ ALL DECLARED FUNCTIONS ARE CALLED DIRECTLY BY TESTS")
    print("=" * 80)
    print()

    return not uncalled


def main():
    parser = argparse.ArgumentParser(
        description="Find Go functions that no test calls directly"
    )
    parser.add_argument(
        "--dir",
        action="append",
        help="Package directory to analyze (repeatable, default: .)"
    )
    parser.add_argument(
        "--fail-on-found",
        action="store_true",
        help="Exit 1 when any function is not called directly"
    )
    parser.add_argument(
        "--json",
        help="Also write the tarp report as JSON (input for tarp_html.py --report)"
    )
    parser.add_argument(
        "--show-called",
        action="store_true",
        help="Also list functions that are called directly"
    )

    args = parser.parse_args()

    directories = [Path(d) for d in (args.dir or ["."])]
    for directory in directories:
        if not directory.is_dir():
            print(f"Error: {directory} is not a directory", file=sys.stderr)
            sys.exit(1)

    try:
        report = analyze_dirs(directories)
        if args.json:
            save_report(report, Path(args.json))
    except TarpError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Found {len(report.declared)} declared functions, {len(report.called)} names called from tests")
    print()

    passed = check_tarp(report, args.show_called)

    sys.exit(0 if passed or not args.fail_on_found else 1)


if __name__ == "__main__":
    main()
