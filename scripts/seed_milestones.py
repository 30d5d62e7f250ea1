#!/usr/bin/env python3
"""Seed default milestone lists for every catalog program (safe to rerun)."""

import argparse
import sys

sys.path.insert(0, ".")

from immitracker import create_app
from immitracker.data.immigration_programs import IMMIGRATION_PROGRAMS
from immitracker.services.milestone_service import MilestoneService


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--env", default="development", help="Config name (default: development)")
    parser.add_argument(
        "--program", action="append", default=[],
        help="Seed only this program id (repeatable)",
    )
    args = parser.parse_args()

    programs = IMMIGRATION_PROGRAMS
    if args.program:
        programs = [p for p in IMMIGRATION_PROGRAMS if p["id"] in args.program]
        unknown = set(args.program) - {p["id"] for p in programs}
        if unknown:
            print(f"[ERROR] unknown program id(s): {', '.join(sorted(unknown))}")
            return 2

    app = create_app(args.env)
    with app.app_context():
        for row in MilestoneService().seed_all_programs(programs):
            print(f"[SEED] program={row['program_id']} milestones={row['milestones_created']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
