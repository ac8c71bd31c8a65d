#!/usr/bin/env python3
"""
Command line tool for checking, normalizing and summarizing ZWO workouts.

    zwo_tool.py check workout.zwo intervals.txt
    zwo_tool.py normalize ./workouts -o ./normalized
    zwo_tool.py stats workout.zwo --ftp 280
"""

import argparse
import glob
import os
import sys
from typing import List, Optional, Tuple

from workout_metrics import (
    DEFAULT_FTP,
    compute_metrics_from_segments,
    format_duration_min_sec,
    infer_zone_from_segments,
)
from zwo_parser import (
    ParseError,
    find_workout_body,
    load_zwo_file,
    parse_zwo_snippet,
)
from zwo_writer import write_zwo_file


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _is_document(text: str) -> bool:
    return "<workout_file" in text.lower()


def position_of(text: str, offset: int) -> Tuple[int, int]:
    """1-based (line, column) of a character offset"""
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return line, column


def collect_errors(text: str) -> List[ParseError]:
    """
    Parse a full ZWO document or a bare snippet and return its errors.

    Error spans are offsets into ``text`` in both cases.
    """
    if not _is_document(text):
        return parse_zwo_snippet(text).errors

    body, body_offset = find_workout_body(text)
    errors = parse_zwo_snippet(body).errors
    return [
        ParseError(start=e.start + body_offset, end=e.end + body_offset, message=e.message)
        for e in errors
    ]


def check_file(path: str) -> int:
    """Print the diagnostics of one file and return how many there were"""
    try:
        text = _read_text(path)
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error reading {path}: {e}")
        return 1

    errors = collect_errors(text)
    for error in errors:
        line, column = position_of(text, error.start)
        print(f"{path}:{line}:{column}: {error.message}")
    return len(errors)


def normalize_zwo_file(zwo_path: str, output_path: Optional[str] = None) -> bool:
    """Re-emit a ZWO file through the canonical model"""
    if output_path is None:
        output_path = zwo_path

    try:
        text = _read_text(zwo_path)
        error_count = len(collect_errors(text))
        if error_count:
            print(f"Warning: {zwo_path} has {error_count} invalid element(s); they will be dropped")

        workout = load_zwo_file(zwo_path)
        write_zwo_file(workout, output_path)
        print(f"Normalized: {zwo_path} -> {output_path}")
        return True
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error normalizing {zwo_path}: {e}")
        return False


def batch_normalize(input_directory: str, output_directory: Optional[str] = None) -> Tuple[int, int]:
    """Normalize every .zwo file in a directory; returns (converted, found)"""
    if output_directory is None:
        output_directory = input_directory

    os.makedirs(output_directory, exist_ok=True)

    zwo_files = sorted(glob.glob(os.path.join(input_directory, "*.zwo")))
    if not zwo_files:
        print(f"No .zwo files found in {input_directory}")
        return 0, 0

    print(f"Found {len(zwo_files)} .zwo files to normalize...")

    success_count = 0
    for zwo_file in zwo_files:
        output_path = os.path.join(output_directory, os.path.basename(zwo_file))
        if normalize_zwo_file(zwo_file, output_path):
            success_count += 1

    print(f"Successfully normalized {success_count}/{len(zwo_files)} files")
    return success_count, len(zwo_files)


def print_stats(zwo_path: str, ftp: int = DEFAULT_FTP) -> None:
    workout = load_zwo_file(zwo_path)
    metrics = compute_metrics_from_segments(workout.raw_segments, ftp)

    print(f"{workout.workout_title or os.path.basename(zwo_path)}")
    print(f"Duration: {format_duration_min_sec(metrics.total_sec)}")
    print(f"Segments: {workout.segment_count}")
    print(f"Zone: {infer_zone_from_segments(workout.raw_segments)}")
    if metrics.tss is None:
        print("IF/TSS: n/a")
    else:
        print(f"IF: {metrics.if_value:.2f}")
        print(f"TSS: {metrics.tss:.0f}")
        print(f"Work: {metrics.kj:.0f} kJ at {ftp}W FTP")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check, normalize and summarize ZWO workouts")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Report syntax and validation errors")
    check.add_argument("files", nargs="+", help="ZWO files or workout snippets")

    normalize = subparsers.add_parser("normalize", help="Rewrite ZWO files in canonical form")
    normalize.add_argument("input", help="ZWO file or directory of .zwo files")
    normalize.add_argument("--output", "-o", help="Output file or directory (default: overwrite)")

    stats = subparsers.add_parser("stats", help="Print duration, IF, TSS and zone")
    stats.add_argument("file", help="ZWO file")
    stats.add_argument(
        "--ftp",
        type=int,
        default=DEFAULT_FTP,
        help=f"Functional Threshold Power in watts (default: {DEFAULT_FTP})",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "check":
        total = sum(check_file(path) for path in args.files)
        if total:
            print(f"{total} error(s) found")
            return 1
        print("No errors found")
        return 0

    if args.command == "normalize":
        if os.path.isdir(args.input):
            converted, found = batch_normalize(args.input, args.output)
            return 0 if converted == found else 1
        if not os.path.exists(args.input):
            print(f"Error: File {args.input} not found")
            return 1
        return 0 if normalize_zwo_file(args.input, args.output) else 1

    if not os.path.exists(args.file):
        print(f"Error: File {args.file} not found")
        return 1
    print_stats(args.file, args.ftp)
    return 0


if __name__ == "__main__":
    sys.exit(main())
