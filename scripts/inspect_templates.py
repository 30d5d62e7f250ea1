#!/usr/bin/env python3
"""Print milestone templates of a program with their lifecycle state."""

import argparse
import sys

sys.path.insert(0, ".")

from immitracker import create_app
from immitracker.services.milestone_merge import find_similar_templates
from immitracker.services.milestone_service import MilestoneService


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("program_type", nargs="?", help="Program type; omit to list every live template")
    parser.add_argument("--sub-type", default=None)
    parser.add_argument("--similar", type=float, default=None, metavar="THRESHOLD",
                        help="Also list likely duplicates at or above THRESHOLD")
    parser.add_argument("--env", default="development")
    args = parser.parse_args()

    app = create_app(args.env)
    with app.app_context():
        service = MilestoneService()
        if args.program_type:
            templates = service.list_templates(args.program_type, args.sub_type, include_unapproved=True)
        else:
            templates = service.list_all_unique_templates(include_unapproved=True)

        print(f"[INFO] templates={len(templates)}")
        for t in templates:
            state = "approved" if t["is_approved"] else "pending"
            print(
                f"{t['use_count']:>4}  {state:<8}  flags={t['flag_count']:<2}  "
                f"{t['category']:<16}  {t['name']}  [{t['normalized_name']}]"
            )

        if args.similar is not None:
            for pair in find_similar_templates(args.similar):
                print(
                    f"[SIMILAR] {pair['similarity']:.2f}  "
                    f"{pair['original']['name']!r} ~ {pair['duplicate']['name']!r}"
                )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
