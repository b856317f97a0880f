import argparse
import sys
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlmodel import Session

from pocketledger.config import settings
from pocketledger.core import budget_aggregator, goal_tracker, income_rollup
from pocketledger.database import engine
from pocketledger.logger import get_logger

logger = get_logger("pocketledger.sweeps")

SWEEPS = {
    "auto-save": goal_tracker.process_auto_save_due,
    "budget-renewal": budget_aggregator.renew_expired_budgets,
    "income-expectations": income_rollup.refresh_income_expectations,
    "reconcile-budgets": budget_aggregator.reconcile_all,
}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the periodic Pocket Ledger sweeps.")
    parser.add_argument("sweeps", nargs="*", help=f"sweeps to run, any of {', '.join(sorted(SWEEPS))} (default: all)")
    args = parser.parse_args(argv)
    unknown = [name for name in args.sweeps if name not in SWEEPS]
    if unknown:
        parser.error(f"unknown sweep: {', '.join(unknown)}")

    selected = args.sweeps or list(SWEEPS)
    print(f"Database URL: {settings.database_url}")

    failed = 0
    with Session(engine) as session:
        for name in selected:
            results = SWEEPS[name](session)
            failures = [r for r in results if r.status == "failed"]
            failed += len(failures)
            print(f"{name}: {len(results)} processed, {len(failures)} failed")
            for r in failures:
                logger.warning("sweep_item_failed", sweep=name, error=r.error)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
