"""
Print the health of every persistence tier.

Round-trips a probe record through the local cache and every configured
remote tier, then prints the diagnostic report. Optionally re-runs the
migration sweep for the configured user first.

Usage:
    # SQLite remote tiers
    export PERSISTENCE_REMOTE_BACKEND="sqlite"
    export PERSISTENCE_SQLITE_PATH="./remote.db"

    # Cosmos remote tiers (uses RBAC by default)
    export PERSISTENCE_REMOTE_BACKEND="cosmos"
    export PERSISTENCE_COSMOS_ENDPOINT="https://your-account.documents.azure.com:443/"

    python scripts/persistence_status.py
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tiered_persistence import (
    ConfigFileIdentityProvider,
    PersistenceConfig,
    PersistenceError,
    PersistenceServices,
    configure_structured_logging,
)


async def main() -> int:
    parser = argparse.ArgumentParser(
        description="Probe the persistence tiers and print a status report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Status from environment configuration
    python scripts/persistence_status.py

    # Settings file with persistence and identity sections
    python scripts/persistence_status.py --config ~/.retail-ops/settings.yaml

    # Migrate local data for the configured user, then report
    python scripts/persistence_status.py --config settings.yaml --force-sync --json
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML settings file (default: configuration from PERSISTENCE_* variables)",
    )
    parser.add_argument(
        "--force-sync", action="store_true", help="Run the migration sweep before probing"
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--verbose", action="store_true", help="Structured debug logging")

    args = parser.parse_args()

    if args.verbose:
        configure_structured_logging(logging.DEBUG, "tiered_persistence")
    else:
        logging.basicConfig(
            level=logging.WARNING, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    try:
        config = (
            PersistenceConfig.from_file(args.config)
            if args.config
            else PersistenceConfig.from_environment()
        )
    except PersistenceError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    identity = ConfigFileIdentityProvider(args.config) if args.config else None

    async with PersistenceServices.create(config, identity=identity) as services:
        migration = None
        if args.force_sync:
            migration = await services.panel.force_sync()
        status = await services.panel.report(max_age=None)

    if args.json:
        output = status.to_dict()
        if migration is not None:
            output["migration"] = migration.to_dict()
        print(json.dumps(output, indent=2))
    else:
        print(status.render())
        if migration is not None:
            print()
            if migration.unavailable_reason:
                print(f"Force sync skipped: {migration.unavailable_reason}")
            else:
                print(
                    f"Force sync: {migration.migrated_count} migrated, "
                    f"{len(migration.failed_keys)} failed"
                )

    return 0 if status.diagnostics.healthy else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
