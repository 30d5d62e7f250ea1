#!/usr/bin/env python3
"""Normalize milestone templates and merge duplicate groups (idempotent)."""

import argparse
import sys

sys.path.insert(0, ".")

from immitracker import create_app
from immitracker.services.milestone_merge import find_duplicate_groups, run_normalization


def normalize_milestones(*, apply: bool = False) -> dict:
    """Report duplicate groups; with ``apply`` also normalize and merge them."""
    if not apply:
        groups = find_duplicate_groups()
        print(f"[INFO] mode=dry-run duplicate_groups={len(groups)}")
        for group in groups:
            names = ", ".join(repr(m.name) for m in group.members)
            print(f"[PLAN] key={group.normalized_key} members={len(group.members)} names={names}")
        return {
            "mode": "dry-run",
            "updated_count": 0,
            "duplicate_groups": len(groups),
            "merged_groups": 0,
            "failed_groups": [],
        }

    result = run_normalization(merge=True)
    for merge in result["merges"]:
        print(
            f"[MERGE] key={merge['normalized_name']} canonical_id={merge['canonical_id']} "
            f"merged={merge['merged_count']}"
        )
    for failure in result["failed_groups"]:
        print(f"[ERROR] key={failure['normalized_name']} error={failure['error']}")

    summary = {"mode": "apply", **result}
    print(
        "[SUMMARY] "
        f"mode={summary['mode']} "
        f"updated={summary['updated_count']} "
        f"duplicate_groups={summary['duplicate_groups']} "
        f"merged={summary['merged_groups']} "
        f"failed={len(summary['failed_groups'])}"
    )
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Normalize milestone templates and merge duplicates (idempotent)."
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Report duplicate groups only")
    mode.add_argument("--apply", action="store_true", help="Normalize and merge duplicate groups")
    parser.add_argument("--env", default="development", help="Config name (default: development)")
    args = parser.parse_args()

    apply = bool(args.apply)
    if not args.dry_run and not args.apply:
        print("[INFO] No mode specified; defaulting to --dry-run")

    app = create_app(args.env)
    with app.app_context():
        result = normalize_milestones(apply=apply)

    if apply and result["failed_groups"]:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
