"""
Command line entry point for dictionary management and migrations.

Usage:
    clinical-migrate [--db PATH] [--dictionary-url URL] <command> [options]

Commands:
    init-db             Create the clinical store tables
    load-dictionary     Make a dictionary version the current one
    changes             Show changes between two dictionary versions
    submit              Start a migration to a new dictionary version
    resume              Continue the open migration
    status              Show one or all migrations
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from tqdm import tqdm

from .config import config
from .config.logging_config import get_logger, setup_logging
from .database.connection import get_connection
from .database.repositories import ConfigRepository, DonorRepository
from .database.schema import initialize_database
from .dictionary.client import create_schema_provider
from .dictionary.manager import DictionaryManager
from .errors import ClinicalError
from .migration.entities import DictionaryMigration, MigrationStage
from .migration.manager import MigrationManager

logger = get_logger("cli")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _progress_bar(total: int, dry_run: bool) -> tqdm:
    desc = "Checking donors (dry run)" if dry_run else "Migrating donors"
    return tqdm(total=total, unit="donor", desc=desc)


def _run_with_progress(start, total: int, dry_run: bool) -> DictionaryMigration:
    with _progress_bar(total, dry_run) as pbar:

        def on_page(migration: DictionaryMigration) -> None:
            pbar.update(migration.stats.total_processed - pbar.n)

        return start(on_page)


def _summary(migration: DictionaryMigration) -> None:
    logger.info("=" * 60)
    logger.info(f"Migration {migration.id}: {migration.from_version} -> {migration.to_version}")
    logger.info(f"State: {migration.state.value} / {migration.stage.value}")
    logger.info(f"Donors checked: {migration.stats.total_processed}")
    logger.info(f"Donors invalid: {migration.stats.invalid_documents_count}")
    logger.info(f"Submissions invalidated: {len(migration.invalid_submissions)}")
    if migration.stage == MigrationStage.FAILED:
        logger.error(f"New dictionary problems: {migration.new_schema_errors}")
    logger.info("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clinical-migrate",
        description="Manage the clinical data dictionary and run migrations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=config.database.path,
        help="Custom database path",
    )
    parser.add_argument(
        "--dictionary-url",
        default=config.dictionary.url,
        help="Dictionary service URL or file:// path (default: DICTIONARY_URL)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=config.app.log_level,
        help="Logging level",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the clinical store tables")

    load = commands.add_parser("load-dictionary", help="Make a version the current dictionary")
    load.add_argument("version", help="Dictionary version to load")

    changes = commands.add_parser("changes", help="Show changes between two versions")
    changes.add_argument("from_version", help="Version to compare from")
    changes.add_argument("to_version", help="Version to compare to")

    submit = commands.add_parser("submit", help="Start a migration")
    submit.add_argument("to_version", help="Target dictionary version")
    submit.add_argument("--initiator", default="cli", help="Recorded as the migration creator")
    submit.add_argument("--dry-run", action="store_true", help="Report without changing donors")

    commands.add_parser("resume", help="Continue the open migration")

    status = commands.add_parser("status", help="Show migrations")
    status.add_argument("--id", dest="migration_id", help="Only show this migration")

    return parser


def run(args: argparse.Namespace) -> int:
    """Execute a parsed command. Returns the process exit code."""
    with get_connection(args.db) as conn:
        initialize_database(conn)
        if args.command == "init-db":
            logger.info(f"Clinical store ready at {args.db}")
            return 0

        dictionary_manager = DictionaryManager(
            create_schema_provider(args.dictionary_url), ConfigRepository(conn)
        )

        if args.command == "load-dictionary":
            dictionary = dictionary_manager.load_and_save_version(args.version)
            logger.info(f"Loaded {dictionary.name} {dictionary.version}")
            return 0

        manager = MigrationManager(conn, dictionary_manager)

        if args.command == "changes":
            _print_json(manager.probe_upgrade(args.from_version, args.to_version))
            return 0

        if args.command == "status":
            _print_json([m.to_dict() for m in manager.get_migration(args.migration_id)])
            return 0

        total = DonorRepository(conn).count()
        if args.command == "submit":
            from_version = dictionary_manager.get_current_version()
            migration = _run_with_progress(
                lambda on_page: manager.submit_migration(
                    from_version,
                    args.to_version,
                    args.initiator,
                    dry_run=args.dry_run,
                    sync=True,
                    progress=on_page,
                ),
                total,
                args.dry_run,
            )
        else:
            migration = _run_with_progress(
                lambda on_page: manager.resume_migration(sync=True, progress=on_page),
                total,
                False,
            )

        _summary(migration)
        return 1 if migration.stage == MigrationStage.FAILED else 0


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the migration CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level, log_file=config.app.log_file)

    try:
        return run(args)
    except ClinicalError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; an open migration can be resumed with 'resume'")
        return 130


if __name__ == "__main__":
    sys.exit(main())
