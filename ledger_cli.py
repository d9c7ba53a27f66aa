#!/usr/bin/env python3

import argparse
import sys
from typing import List

import audit
from errors import LedgerError
from models_repo import Donation
from state_machine import DonationLedger

def load_ledger(path: str, administrator: str) -> DonationLedger:
    ledger = DonationLedger(administrator)
    ledger.replay(audit.load_jsonl(path))
    return ledger

def format_donation(d: Donation) -> str:
    recipient = d.recipient or "-"
    return f"{d.id} | {d.status.value:<9} | donor={d.donor} recipient={recipient} | qty={d.quantity} | {d.title}"

def print_donations(donations: List[Donation]):
    for d in donations:
        print(format_donation(d))

# CLI
def main(argv=None):
    p = argparse.ArgumentParser(description="Verify and query an exported donation notification log")
    p.add_argument("--log", required=True, help="JSON Lines notification export")
    p.add_argument("--admin", default="admin", help="Administrator the log started with")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("verify")
    sub.add_parser("count")

    sub_latest = sub.add_parser("latest")
    sub_latest.add_argument("--limit", type=int, default=0, help="0 lists every donation")

    sub_show = sub.add_parser("show")
    sub_show.add_argument("--id", type=int, required=True)

    sub_donor = sub.add_parser("donor")
    sub_donor.add_argument("--identity", required=True)

    sub_recipient = sub.add_parser("recipient")
    sub_recipient.add_argument("--identity", required=True)

    args = p.parse_args(argv)

    try:
        ledger = load_ledger(args.log, args.admin)
        if args.cmd == "verify":
            notes = ledger.notifications()
            head = notes[-1].hash if notes else "-"
            print(f"OK: {len(notes)} notifications, head {head}")
        elif args.cmd == "count":
            print(ledger.donation_count())
        elif args.cmd == "latest":
            print_donations(ledger.latest_donations(args.limit))
        elif args.cmd == "show":
            print(ledger.get_donation(args.id).model_dump_json(indent=2))
        elif args.cmd == "donor":
            print_donations(ledger.donations_for_donor(args.identity))
        elif args.cmd == "recipient":
            print_donations(ledger.donations_for_recipient(args.identity))
    except LedgerError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Cannot read {args.log}: {e}", file=sys.stderr)
        return 2
    return 0

if __name__ == "__main__":
    sys.exit(main())
