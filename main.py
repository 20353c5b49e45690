# main.py
"""CLI entry point for the novel automation core."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Plan and write novels with an LLM.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan = subparsers.add_parser("plan", help="Plan a task manifest for a novel")
    plan.add_argument("--novel", required=True, help="Path to the novel JSON file")
    plan.add_argument("--instruction", default=None, help="Instruction for the director")
    plan.add_argument("--output", default=None, help="Where to write the manifest JSON")

    write = subparsers.add_parser("write", help="Write chapters from an outline set")
    write.add_argument("--novel", required=True, help="Path to the novel JSON file")
    write.add_argument("--outline-set", default=None, help="Outline set id (default: first)")
    write.add_argument("--start", type=int, default=0, help="Outline index to start from")
    write.add_argument("--volume", default=None, help="Volume id for new chapters")
    write.add_argument(
        "--full-outline",
        action="store_true",
        help="Include the whole outline in every prompt",
    )
    write.add_argument("--regex-scripts", default=None, help="JSON list of regex scripts")
    write.add_argument("--prompts", default=None, help="JSON list of extra prompt items")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and run the requested command."""
    args = build_parser().parse_args(argv)
    if args.command == "plan":
        return run(
            "plan",
            novel_path=args.novel,
            instruction=args.instruction,
            output=args.output,
        )
    return run(
        "write",
        novel_path=args.novel,
        outline_set_id=args.outline_set,
        start_index=args.start,
        volume_id=args.volume,
        include_full_outline=args.full_outline,
        regex_scripts_path=args.regex_scripts,
        prompts_path=args.prompts,
    )


if __name__ == "__main__":
    sys.exit(main())
