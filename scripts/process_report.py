#!/usr/bin/env python3
"""
Resolve all names in an extracted daily report and record history.

The input is the JSON produced by the transcript extraction step:
    {"report_id": "...", "report_date": "2025-03-14", "project_id": "...",
     "reporter_name": "...", "personnel": [{"name": "...", "hours_worked": 8}],
     "vendors": [{"name": "...", "materials_delivered": "..."}]}

Usage:
    python scripts/process_report.py data/reports/R-2025-0314.json
    python scripts/process_report.py data/reports/*.json --no-create
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.logging import logger
from sitelog.database import SessionLocal, init_db
from sitelog.entity_resolution import EntityResolver
from sitelog.history import HistoryRecorder
from sitelog.mentions import ExtractedReport, ProcessorConfig, ReportMentionProcessor
from sitelog.store import SqlEntityStore


def main():
    parser = argparse.ArgumentParser(description="Resolve names in extracted reports")
    parser.add_argument("reports", nargs="+", type=Path, help="Extracted report JSON file(s)")
    parser.add_argument(
        "--no-create",
        action="store_true",
        help="Leave unmatched names unresolved instead of creating entities",
    )

    args = parser.parse_args()

    init_db()
    db = SessionLocal()

    try:
        config = ProcessorConfig.from_settings()
        if args.no_create:
            config = replace(config, auto_create=False)

        processor = ReportMentionProcessor(
            EntityResolver(SqlEntityStore(db)),
            HistoryRecorder(db),
            config,
        )

        totals = {"reports": 0, "mentions": 0, "created": 0, "needs_review": 0}
        for path in args.reports:
            with open(path, encoding="utf-8") as f:
                report = ExtractedReport.from_dict(json.load(f))

            resolution = processor.process_report(report)
            summary = resolution.summary()
            totals["reports"] += 1
            totals["mentions"] += summary["mentions"]
            totals["created"] += summary["created"]
            totals["needs_review"] += summary["needs_review"]

            print(f"\n{report.report_id} ({path.name})")
            for mention in resolution.mentions:
                flag = f"  [REVIEW: {mention.review_reason}]" if mention.needs_review else ""
                target = mention.entity_id or "-"
                print(
                    f"  {mention.role:<9} {mention.raw_text:<30} "
                    f"{mention.result.outcome.value:<9} {target}{flag}"
                )

        print("\n" + "=" * 60)
        print(
            f"Reports: {totals['reports']}  Mentions: {totals['mentions']}  "
            f"Created: {totals['created']}  Needs review: {totals['needs_review']}"
        )
        logger.info(f"Processed reports: {totals}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
