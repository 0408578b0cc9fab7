#!/usr/bin/env python3
"""
Check that a CRM store satisfies the link and hierarchy invariants.

Optionally lists records that the matcher would consider duplicates of each
other (left over from imports run with merging disabled, or from manual edits).

Usage:
    python scripts/check_integrity.py --db data/crm.db
    python scripts/check_integrity.py --db data/crm.db --duplicates
"""

import argparse
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from crmlinks.config import EngineConfig
from crmlinks.database import get_session
from crmlinks.models import ENTITY_KINDS
from pipelines.entity_resolution.resolver import find_candidates
from pipelines.relationships.graph import check_invariants
from storage.repositories.crm import load_snapshot


def find_duplicate_pairs(population, config):
    """Pairs (kind, lower id, higher id, confidence) above the match threshold."""
    pairs = []
    for entity in population:
        for candidate in find_candidates(entity, population, config=config):
            if entity.id < candidate.entity_id:
                pairs.append((entity.kind, entity.id, candidate.entity_id, candidate.confidence))
    return sorted(pairs)


def check(db_path: Path, duplicates: bool = False) -> bool:
    """
    Returns True if the store is sound (and duplicate-free when asked).
    """
    config = EngineConfig.from_env()
    print(f"Reading {db_path}...")
    session = get_session(db_path)
    try:
        population, snapshot = load_snapshot(session, config)
    finally:
        session.close()

    for kind in ENTITY_KINDS:
        print(f"  {kind}: {sum(1 for e in population if e.kind == kind)}")
    print(f"  links: {len(snapshot.areas)}")
    print(f"  hierarchy edges: {len(snapshot.parents)}")
    print(f"  graph version: {snapshot.version}")

    ok = True
    problems = check_invariants(snapshot)
    if problems:
        ok = False
        print(f"\n❌ INVARIANT VIOLATIONS: {len(problems)}")
        for problem in problems[:10]:
            print(f"   - {problem}")
        if len(problems) > 10:
            print(f"   ... and {len(problems) - 10} more")
    else:
        print("\n✅ Links and hierarchy satisfy all invariants")

    if duplicates:
        pairs = find_duplicate_pairs(population, config)
        if pairs:
            ok = False
            print(f"\n❌ LIKELY DUPLICATES: {len(pairs)} pairs")
            for kind, a, b, confidence in pairs[:10]:
                print(f"   - {kind} {a} ~ {b} ({confidence:.2f})")
            if len(pairs) > 10:
                print(f"   ... and {len(pairs) - 10} more")
        else:
            print("✅ No duplicates above the match threshold")

    return ok


def main():
    parser = argparse.ArgumentParser(description="Check CRM store integrity")
    parser.add_argument("--db", type=Path, default=Path("data/crm.db"),
                        help="Path to SQLite database file")
    parser.add_argument("--duplicates", action="store_true",
                        help="Also report records the matcher considers duplicates")

    args = parser.parse_args()

    if not args.db.exists():
        print(f"❌ Database file not found: {args.db}")
        sys.exit(1)

    success = check(args.db, duplicates=args.duplicates)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
