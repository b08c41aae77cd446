"""
CLI entry point for backfilling the concept graph from existing loops.

Re-runs concept sync for every loop that has key concepts and folds mastery
once for mastered loops that never produced UserConcept rows.
"""

import argparse
from pathlib import Path

from teachback.core.lifecycle import LoopManager
from teachback.store.database import LearningStore
from teachback.store.queries import LoopQueries
from teachback.shared.config import settings
from teachback.shared.logging import setup_logging, get_logger

logger = get_logger(__name__)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="teachback concept backfill")
    parser.add_argument(
        "--db-path",
        type=Path,
        default=Path(settings.store.db_path),
        help="SQLite database path"
    )
    parser.add_argument(
        "--user",
        default=None,
        help="Only backfill loops owned by this user id"
    )
    parser.add_argument(
        "--no-fold",
        action="store_true",
        help="Sync concepts only; skip mastery folding for mastered loops"
    )

    args = parser.parse_args()

    setup_logging()

    store = LearningStore(args.db_path)
    manager = LoopManager()

    with store.transaction() as conn:
        loops = LoopQueries.list_with_concepts(conn, args.user)

    stats = {"loops": 0, "concepts": 0, "folded": 0, "failed": 0}
    for loop in loops:
        try:
            with store.transaction() as conn:
                result = manager.resync_loop(conn, loop, fold_if_mastered=not args.no_fold)
        except Exception as e:
            stats["failed"] += 1
            logger.error(f"Backfill failed for loop {loop.id}: {str(e)}", extra={"loop_id": loop.id})
            continue
        stats["loops"] += 1
        stats["concepts"] += result["concepts"]
        stats["folded"] += int(result["folded"])

    print("\n" + "=" * 50)
    print("Concept Backfill Summary")
    print("=" * 50)
    print(f"Loops synced: {stats['loops']}")
    print(f"Concepts linked: {stats['concepts']}")
    print(f"Loops folded: {stats['folded']}")
    print(f"Loops failed: {stats['failed']}")
    print("=" * 50)


if __name__ == "__main__":
    main()
