"""
Operator command line for garage data migrations

The live memory store is in-process, so commands that read it are seeded
from a JSON snapshot file (the format produced by KeyedMemoryStore.snapshot).
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import ConfigManager, GarageDataConfig
from .data import RelationalStore
from .migration import (
    DataBackupUtility,
    DataMigration,
    MigrationError,
    MigrationOptions,
    MigrationRollback,
    MigrationStatusTracker,
    RollbackOptions,
)
from .storage import KeyedMemoryStore
from .utils import DataPaths, setup_logging

logger = logging.getLogger("garage_data.cli")


class CommandContext:
    """Configuration and stores shared by every command"""

    def __init__(self, config: GarageDataConfig):
        self.config = config
        self.paths = DataPaths(
            config.storage.base_data_dir,
            backup_dir=config.backup.backup_dir,
            status_dir=config.migration.status_dir,
        )
        self.memory_store = KeyedMemoryStore()
        self.relational_store = RelationalStore(
            config.storage.database_url or self.paths.database_url,
            enforce_foreign_keys=config.storage.enforce_foreign_keys,
            echo=config.storage.echo_sql,
        )

    def backup_utility(self) -> DataBackupUtility:
        return DataBackupUtility(self.memory_store, self.paths.backups_dir, self.relational_store)

    def load_source(self, source: Optional[Path]) -> None:
        if source is None:
            return
        with open(source, 'r', encoding='utf-8') as f:
            self.memory_store.load_snapshot(json.load(f))
        logger.info(f"Seeded memory store from {source}: {len(self.memory_store)} spots")

    def write_snapshot(self, output: Optional[Path]) -> None:
        if output is None:
            return
        with open(output, 'w', encoding='utf-8') as f:
            json.dump(self.memory_store.snapshot(), f, indent=2)
        logger.info(f"Memory store snapshot written to {output}")


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def cmd_migrate(ctx: CommandContext, args) -> int:
    ctx.load_source(args.source)
    migration = DataMigration(
        ctx.memory_store,
        ctx.relational_store,
        migration_id=args.id,
        config=ctx.config,
        paths=ctx.paths,
    )
    defaults = migration.default_options()
    options = MigrationOptions(
        dry_run=args.dry_run,
        skip_backup=args.skip_backup or defaults.skip_backup,
        validate_only=args.validate_only,
        batch_size=args.batch_size or defaults.batch_size,
        validate_after=defaults.validate_after and not args.no_validate,
        resume=not args.no_resume,
    )
    result = await migration.migrate(options)
    _print(result.model_dump(mode="json"))
    return 0 if result.success else 1


async def cmd_rollback(ctx: CommandContext, args) -> int:
    ctx.load_source(args.source)
    rollback = MigrationRollback(
        args.migration_id,
        ctx.memory_store,
        ctx.relational_store,
        config=ctx.config,
        paths=ctx.paths,
    )
    result = await rollback.rollback(RollbackOptions(
        confirm=args.confirm,
        preserve_new_data=args.preserve_new_data,
        validate_after=not args.skip_validation,
        backup_id=args.backup_id,
    ))
    ctx.write_snapshot(args.output)
    _print(result.model_dump(mode="json"))
    return 0 if result.success else 1


async def cmd_backup(ctx: CommandContext, args) -> int:
    ctx.load_source(args.source)
    result = await ctx.backup_utility().create_backup(
        args.id,
        include_database=ctx.config.backup.include_database and not args.no_database,
        retention_days=ctx.config.backup.retention_days,
    )
    _print(result.model_dump(mode="json"))
    return 0 if result.success else 1


async def cmd_list_backups(ctx: CommandContext, args) -> int:
    backups = await ctx.backup_utility().list_backups(args.migration_id)
    _print([backup.model_dump(mode="json") for backup in backups])
    return 0


async def cmd_status(ctx: CommandContext, args) -> int:
    tracker = MigrationStatusTracker(args.migration_id, ctx.paths.status_dir)
    if not tracker.exists():
        logger.error(f"No status recorded for migration {args.migration_id}")
        return 1
    status = await tracker.get_status()
    progress = await tracker.get_progress()
    _print({
        "status": status.model_dump(mode="json", exclude={"checkpoints"}),
        "checkpoints": len(status.checkpoints),
        "progress": progress,
    })
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="garage-data",
        description="Parking garage data migration, backup and rollback tool"
    )
    parser.add_argument('--config', help='YAML configuration file')
    parser.add_argument('--data-dir', help='Base data directory (overrides configuration)')
    parser.add_argument('--database-url', help='SQLAlchemy async database URL (overrides configuration)')
    parser.add_argument('--log-level', help='Logging level')

    subparsers = parser.add_subparsers(dest='command', required=True)

    migrate = subparsers.add_parser('migrate', help='Migrate the memory store to the relational store')
    migrate.add_argument('--source', type=Path, help='JSON memory store snapshot to migrate')
    migrate.add_argument('--id', help='Migration id (default: migration-<epoch ms>)')
    migrate.add_argument('--dry-run', action='store_true', help='Validate and checkpoint without writing')
    migrate.add_argument('--skip-backup', action='store_true', help='Skip the pre-migration backup')
    migrate.add_argument('--validate-only', action='store_true', help='Only compare the two stores')
    migrate.add_argument('--batch-size', type=int, help='Records per batch')
    migrate.add_argument('--no-validate', action='store_true', help='Skip post-migration validation')
    migrate.add_argument('--no-resume', action='store_true', help='Refuse to resume an interrupted run')
    migrate.set_defaults(handler=cmd_migrate)

    rollback = subparsers.add_parser('rollback', help='Roll a migration back from its backup')
    rollback.add_argument('--migration-id', required=True, help='Migration to roll back')
    rollback.add_argument('--confirm', action='store_true', help='Confirm the rollback')
    rollback.add_argument('--preserve-new-data', action='store_true',
                          help='Keep rows changed after the migration finished')
    rollback.add_argument('--skip-validation', action='store_true', help='Skip rollback validation')
    rollback.add_argument('--backup-id', help='Backup to restore (default: the migration backup)')
    rollback.add_argument('--source', type=Path, help='JSON snapshot of the current memory store')
    rollback.add_argument('--output', type=Path, help='Write the restored memory store snapshot here')
    rollback.set_defaults(handler=cmd_rollback)

    backup = subparsers.add_parser('backup', help='Create a backup bundle')
    backup.add_argument('--source', type=Path, help='JSON memory store snapshot to back up')
    backup.add_argument('--id', default='manual', help='Migration id recorded in the bundle')
    backup.add_argument('--no-database', action='store_true', help='Do not copy the SQLite file')
    backup.set_defaults(handler=cmd_backup)

    list_backups = subparsers.add_parser('list-backups', help='List backup bundles, newest first')
    list_backups.add_argument('--migration-id', help='Only backups of this migration')
    list_backups.set_defaults(handler=cmd_list_backups)

    status = subparsers.add_parser('status', help='Show the status of a migration')
    status.add_argument('--migration-id', required=True, help='Migration to inspect')
    status.set_defaults(handler=cmd_status)

    return parser


def load_config(args) -> GarageDataConfig:
    config = ConfigManager(args.config).config
    if args.data_dir:
        config.storage.base_data_dir = args.data_dir
    if args.database_url:
        config.storage.database_url = args.database_url
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


async def run(args) -> int:
    ctx = CommandContext(load_config(args))
    setup_logging(ctx.config.log_level, ctx.config.json_logs)
    try:
        return await args.handler(ctx, args)
    finally:
        await ctx.relational_store.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except MigrationError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except (OSError, ValueError) as e:
        logger.error(f"{args.command} error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
