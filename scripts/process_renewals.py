#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from brokerdesk.config import DB_PATH, LOG_LEVEL
from brokerdesk.partnerships import expire_codes
from brokerdesk.persistence import init_db
from brokerdesk.renewals import process_scheduled_renewals


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Send scheduled renewal notices due today.")
    p.add_argument("--db", type=Path, default=DB_PATH)
    p.add_argument("--today", type=date.fromisoformat, default=None, help="Override the run date (YYYY-MM-DD)")
    p.add_argument("--expire-codes", action="store_true", help="Also expire overdue discount codes")
    return p.parse_args()


def main() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = parse_args()
    init_db(args.db)
    result = process_scheduled_renewals(args.db, today=args.today)
    if args.expire_codes:
        result["expired_codes"] = expire_codes(args.db)
    print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
