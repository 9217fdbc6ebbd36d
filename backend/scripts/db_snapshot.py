#!/usr/bin/env python3
import argparse
import json
import os
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

BACKEND_DIR = Path(__file__).resolve().parents[1]
DEFAULT_DB = BACKEND_DIR / "data" / "goswish.sqlite3"


def build_summary(snapshot: Dict[str, List[Dict[str, Any]]]) -> Dict[str, Any]:
    booking_status: Counter[str] = Counter()
    payment_status: Counter[str] = Counter()
    for booking in snapshot.get("bookings", []) or []:
        booking_status[str(booking.get("status", "unknown"))] += 1
        payment_status[str(booking.get("payment_status", "unknown"))] += 1

    payouts = [t for t in snapshot.get("transactions", []) or [] if t.get("type") == "payout"]
    unread = [n for n in snapshot.get("notifications", []) or [] if not n.get("read")]

    return {
        "collections": {name: len(docs or []) for name, docs in sorted(snapshot.items())},
        "booking_status": dict(booking_status.most_common()),
        "payment_status": dict(payment_status.most_common()),
        "payout_total": round(sum(float(t.get("amount") or 0) for t in payouts), 2),
        "unread_notifications": len(unread),
    }


def print_human(summary: Dict[str, Any]) -> None:
    print("Documents per collection:")
    for name, count in summary["collections"].items():
        print(f"  - {name}: {count}")
    print("Bookings by status:")
    for status, count in summary["booking_status"].items():
        print(f"  - {status}: {count}")
    print(f"Payouts released: ${summary['payout_total']:.2f}")
    print(f"Unread notifications: {summary['unread_notifications']}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Export, restore or summarize the GoSwish document store.")
    parser.add_argument("--db", default=os.getenv("GOSWISH_DB_PATH", str(DEFAULT_DB)), help="sqlite file to operate on.")
    sub = parser.add_subparsers(dest="command", required=True)

    export_cmd = sub.add_parser("export", help="Write every collection to a JSON file.")
    export_cmd.add_argument("out", help="Destination JSON path.")

    import_cmd = sub.add_parser("import", help="Replace collections from a JSON snapshot.")
    import_cmd.add_argument("snapshot", help="Snapshot JSON path.")

    summary_cmd = sub.add_parser("summary", help="Print document counts and booking status totals.")
    summary_cmd.add_argument("--json-out", default="", help="Optional path to write JSON summary.")

    args = parser.parse_args(argv)

    # The store module opens its default database on import; point it at --db first.
    os.environ["GOSWISH_DB_PATH"] = args.db
    sys.path.insert(0, str(BACKEND_DIR))
    from goswish.services.document_store import DocumentStore, StoreError

    store = DocumentStore(db_path=args.db)

    if args.command == "export":
        snapshot = store.export_database()
        Path(args.out).write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
        print(f"Exported {sum(len(docs) for docs in snapshot.values())} documents to {args.out}")
        return 0

    if args.command == "import":
        try:
            snapshot = json.loads(Path(args.snapshot).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            print(f"Cannot read snapshot: {exc}", file=sys.stderr)
            return 1
        if not isinstance(snapshot, dict):
            print("Snapshot must be a JSON object keyed by collection", file=sys.stderr)
            return 1
        try:
            store.import_database(snapshot)
        except StoreError as exc:
            print(f"Import failed: {exc}", file=sys.stderr)
            return 1
        print(f"Restored {len(snapshot)} collection(s) into {args.db}")
        return 0

    summary = build_summary(store.export_database())
    print_human(summary)
    if args.json_out:
        Path(args.json_out).write_text(json.dumps(summary, indent=2), encoding="utf-8")
        print(f"Wrote JSON summary: {args.json_out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
