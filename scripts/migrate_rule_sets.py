#!/usr/bin/env python3
"""Tag persisted auto-rejection rule sets with their schema version.

Rows written before the ``version`` discriminator existed are tagged by shape:
a list of rules becomes "structured", a criteria object becomes "legacy".
Enabled rows with no rules at all are stored as a disabled legacy rule set,
since they could never reject anyone.

Usage:
    python scripts/migrate_rule_sets.py               # Migrate all untagged rows
    python scripts/migrate_rule_sets.py --dry-run     # Report without writing
    python scripts/migrate_rule_sets.py --database-url postgresql://...

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (default for --database-url)
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

import asyncpg

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from hiring_pipeline.services.rules import detect_version, dump_rule_set, load_rule_set  # noqa: E402


def print_header(text: str) -> None:
    """Print section header."""
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def tag_rule_set(stored: dict[str, Any]) -> dict[str, Any] | None:
    """
    Compute the tagged form of an untagged rule set.

    Returns:
        Tagged rule set, or None if the row can't be parsed at all
    """
    version = detect_version(stored)
    if version is None:
        return {"version": "legacy", "enabled": False, "rules": {}}

    rule_set = load_rule_set({**stored, "version": version})
    if rule_set is None:
        return None
    return dump_rule_set(rule_set)


async def migrate(database_url: str, dry_run: bool) -> int:
    """
    Tag every untagged rule set.

    Returns:
        Number of rows that could not be migrated
    """
    conn = await asyncpg.connect(database_url)
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )

    failed = 0
    try:
        rows = await conn.fetch(
            """
            SELECT job_id, title, auto_rejection_rules
            FROM jobs
            WHERE NOT (auto_rejection_rules ? 'version')
            ORDER BY created_at
        """
        )
        print_header(f"{len(rows)} untagged rule set(s)")

        async with conn.transaction():
            for row in rows:
                tagged = tag_rule_set(row["auto_rejection_rules"])
                if tagged is None:
                    failed += 1
                    print(f"✗ {row['job_id']} ({row['title']}): unparseable, left as is")
                    continue

                print(f"✓ {row['job_id']} ({row['title']}): {tagged['version']}")
                if not dry_run:
                    await conn.execute(
                        """
                        UPDATE jobs SET auto_rejection_rules = $2, updated_at = NOW()
                        WHERE job_id = $1
                    """,
                        row["job_id"],
                        tagged,
                    )
    finally:
        await conn.close()

    if dry_run:
        print("\nDry run: no rows were written")
    return failed


def main() -> None:
    parser = argparse.ArgumentParser(description="Tag stored rule sets with their version")
    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL"),
        help="PostgreSQL connection string (default: $DATABASE_URL)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    args = parser.parse_args()

    if not args.database_url:
        parser.error("--database-url or DATABASE_URL is required")

    failed = asyncio.run(migrate(args.database_url, args.dry_run))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
