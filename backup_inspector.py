"""CLI backup inspector — list, count or export batches saved after failed deliveries."""

import argparse
import os
import sys

from loki_shipper.backup import read_records


def main(argv=None):
    parser = argparse.ArgumentParser(description="Inspect the Loki backup file")
    parser.add_argument(
        "--file",
        default=os.environ.get("BACKUP_FILE", os.path.join("logs", "loki_backup.log")),
        help="Backup file to read",
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", action="store_true", help="List records with capture times")
    group.add_argument("--count", action="store_true", help="Print the number of records")
    group.add_argument("--export", action="store_true",
                       help="Print recovered payloads for manual replay")
    args = parser.parse_args(argv)

    try:
        records = list(read_records(args.file))
    except FileNotFoundError:
        print(f"Error: backup file not found: {args.file}", file=sys.stderr)
        return 1

    if args.count:
        print(len(records))
    elif args.list:
        if not records:
            print("No backed-up batches.")
            return 0
        for i, record in enumerate(records, 1):
            size = len(record.payload.encode("utf-8"))
            print(f"  #{i}  {record.captured_at.isoformat()}  ({size} B)")
    elif args.export:
        for record in records:
            sys.stdout.write(record.payload + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
