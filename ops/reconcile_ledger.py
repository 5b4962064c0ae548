"""Replay every account's ledger and report balance drift.

Exit status: 0 when all balances match their ledger, 2 when any drift.
Intended for cron: ``python ops/reconcile_ledger.py --persist``.
"""
from __future__ import annotations

import argparse
import json
import sys

EXIT_CLEAN = 0
EXIT_DRIFT = 2


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Check account balances against the ledger.")
    parser.add_argument(
        "--role",
        choices=("customer", "vendor", "rider", "manager"),
        help="Only check accounts with this role.",
    )
    parser.add_argument("--persist", action="store_true", help="Save the result as a reconciliation report.")
    parser.add_argument("--quiet", action="store_true", help="Print only drifting accounts.")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    from mealsection import create_app
    from mealsection.services.reconciliation_service import persist_report, recompute_account_balances

    app = create_app()
    with app.app_context():
        summary = recompute_account_balances(role=args.role)
        if args.persist:
            summary["report_id"] = int(persist_report(summary, trigger="cli").id)

    print(json.dumps(summary["drift_items"] if args.quiet else summary, indent=2))
    return EXIT_DRIFT if summary["drift_count"] else EXIT_CLEAN


if __name__ == "__main__":
    sys.exit(main())
