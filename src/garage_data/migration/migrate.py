"""
Data Migration
Moves garage state from the memory store to the relational store in fixed
dependency order, batch by batch, with a checkpoint after every batch.
"""

import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..config.models import GarageDataConfig
from ..data.database import RelationalStore
from ..data.models import (
    GarageRow,
    FloorRow,
    SpotRow,
    VehicleRow,
    ParkingSessionRow,
    PaymentRow,
)
from ..data.repository import GarageRepository
from ..models.domain import GarageConfig
from ..models.enums import MigrationState, VehicleStatus
from ..storage.memory_store import KeyedMemoryStore
from ..utils.paths import DataPaths
from . import mappers
from .backup import DataBackupUtility
from .errors import (
    ConstraintViolationError,
    MigrationError,
    MigrationStateError,
    IntegrityCheckError,
    TransientStoreError,
)
from .status import MigrationStatus, MigrationStatusTracker
from .validator import DataValidator, ValidationResult

logger = structlog.get_logger("migration")


class MigrationStep(NamedTuple):
    name: str
    table: str


# Parents before children
MIGRATION_STEPS = (
    MigrationStep("migrate-garage-config", "garages"),
    MigrationStep("migrate-floors", "floors"),
    MigrationStep("migrate-spots", "spots"),
    MigrationStep("migrate-vehicles", "vehicles"),
    MigrationStep("migrate-sessions", "parking_sessions"),
    MigrationStep("migrate-payments", "payments"),
)


class MigrationOptions(BaseModel):
    """Options of one migration run"""

    dry_run: bool = False
    skip_backup: bool = False
    validate_only: bool = False
    batch_size: int = Field(50, ge=1, le=10000)
    validate_after: bool = True
    resume: bool = True


class StepResult(BaseModel):
    step: str
    table: str
    total_records: int = 0
    processed_records: int = 0
    skipped_records: int = 0


class MigrationResult(BaseModel):
    migration_id: str
    success: bool
    status: Optional[MigrationState] = None
    dry_run: bool = False
    backup_path: Optional[str] = None
    steps: List[StepResult] = Field(default_factory=list)
    validation: Optional[ValidationResult] = None


# (natural key, payload) pairs in write order
Items = List[Tuple[str, Any]]


class DataMigration:
    """
    Memory store -> relational store migration

    - Collections are validated as a whole before any of their batches is written
    - Each batch is one relational transaction of natural-key upserts
    - Re-running is safe; an interrupted run resumes from its checkpoints
    """

    def __init__(self,
                 memory_store: KeyedMemoryStore,
                 relational_store: RelationalStore,
                 migration_id: Optional[str] = None,
                 tracker: Optional[MigrationStatusTracker] = None,
                 backup_utility: Optional[DataBackupUtility] = None,
                 validator: Optional[DataValidator] = None,
                 config: Optional[GarageDataConfig] = None,
                 paths: Optional[DataPaths] = None):
        self.config = config or GarageDataConfig()
        self.migration_id = migration_id or f"migration-{int(time.time() * 1000)}"
        self.memory_store = memory_store
        self.relational_store = relational_store

        if tracker is None or backup_utility is None:
            paths = paths or DataPaths(
                self.config.storage.base_data_dir,
                backup_dir=self.config.backup.backup_dir,
                status_dir=self.config.migration.status_dir,
            )
        self.tracker = tracker or MigrationStatusTracker(self.migration_id, paths.status_dir)
        self.backup_utility = backup_utility or DataBackupUtility(
            memory_store, paths.backups_dir, relational_store
        )
        self.validator = validator or DataValidator(
            memory_store, relational_store, self.config.migration.default_garage_name
        )

        self._collectors: Dict[str, Callable[[], Items]] = {
            "garages": self._collect_garages,
            "floors": self._collect_floors,
            "spots": self._collect_spots,
            "vehicles": self._collect_vehicles,
            "parking_sessions": self._collect_sessions,
            "payments": self._collect_payments,
        }
        self._writers = {
            "garages": self._write_garages,
            "floors": self._write_floors,
            "spots": self._write_spots,
            "vehicles": self._write_vehicles,
            "parking_sessions": self._write_sessions,
            "payments": self._write_payments,
        }

    @property
    def default_garage_name(self) -> str:
        return self.config.migration.default_garage_name

    def default_options(self) -> MigrationOptions:
        settings = self.config.migration
        return MigrationOptions(
            batch_size=settings.batch_size,
            skip_backup=settings.skip_backup,
            validate_after=settings.validate_after,
        )

    # ============= Run =============

    async def migrate(self, options: Optional[MigrationOptions] = None) -> MigrationResult:
        """
        Run (or resume) the migration.

        Raises:
            MigrationError: Any failure; the status record is left failed and inspectable
        """
        options = options or self.default_options()
        log = logger.bind(migration_id=self.migration_id)

        if options.validate_only:
            validation = await self.validator.validate_all()
            log.info("Validation-only run finished", success=validation.success,
                     errors=len(validation.errors))
            return MigrationResult(
                migration_id=self.migration_id,
                success=validation.success,
                validation=validation,
            )

        status = await self._start(options)
        log.info("Migration started", attempt=status.attempt, dry_run=options.dry_run,
                 resumed_steps=status.completed_steps, batch_size=options.batch_size)

        steps: List[StepResult] = []
        try:
            if options.dry_run:
                await self._run_steps(None, status, options, steps)
            else:
                async with self.relational_store.session() as session:
                    await self._run_steps(GarageRepository(session), status, options, steps)

            validation = None
            if options.validate_after and not options.dry_run:
                validation = await self.validator.validate_all()
                if not validation.success:
                    message = f"Post-migration validation failed with {len(validation.errors)} errors"
                    raise IntegrityCheckError(message, result=validation)

        except MigrationError as e:
            await self._fail(str(e))
            raise
        except IntegrityError as e:
            await self._fail(f"Constraint violation: {e.orig}")
            raise ConstraintViolationError(str(e.orig)) from e
        except (SQLAlchemyError, OSError) as e:
            await self._fail(f"Store failure: {e}")
            raise TransientStoreError(str(e)) from e

        final = await self.tracker.update_status(status=MigrationState.COMPLETED)
        log.info("Migration completed", steps=len(steps),
                 records=sum(step.processed_records for step in steps))
        return MigrationResult(
            migration_id=self.migration_id,
            success=True,
            status=final.status,
            dry_run=options.dry_run,
            backup_path=final.backup_path,
            steps=steps,
            validation=validation,
        )

    async def _start(self, options: MigrationOptions) -> MigrationStatus:
        """Initialize a new attempt or pick up an interrupted one, then take the backup"""
        status = None
        if self.tracker.exists():
            existing = await self.tracker.get_status()
            if not existing.is_terminal:
                if not options.resume:
                    raise MigrationStateError(
                        f"Migration {self.migration_id} is already {existing.status.value}"
                    )
                status = existing

        if status is None:
            status = await self.tracker.initialize_migration(total_steps=len(MIGRATION_STEPS))

        if status.status == MigrationState.PENDING:
            backup_path = status.backup_path
            if not (options.skip_backup or options.dry_run):
                backup_path = await self._backup()
            status = await self.tracker.update_status(
                status=MigrationState.IN_PROGRESS, backup_path=backup_path
            )
        return status

    async def _backup(self) -> str:
        backup = await self.backup_utility.create_backup(
            self.migration_id,
            include_database=self.config.backup.include_database,
            retention_days=self.config.backup.retention_days,
        )
        if not backup.success:
            message = f"Backup failed: {backup.error}"
            await self._fail(message)
            raise TransientStoreError(message)
        logger.info("Backup created", migration_id=self.migration_id, backup_path=backup.backup_path)
        return backup.backup_path

    async def _fail(self, error: str) -> None:
        try:
            await self.tracker.update_status(status=MigrationState.FAILED, error=error)
        except MigrationStateError as e:
            logger.warning("Could not mark migration failed", migration_id=self.migration_id,
                           error=str(e))
        logger.error("Migration failed", migration_id=self.migration_id, error=error)

    async def _run_steps(self,
                         repo: Optional[GarageRepository],
                         status: MigrationStatus,
                         options: MigrationOptions,
                         steps: List[StepResult]) -> None:
        for index, step in enumerate(MIGRATION_STEPS):
            if index < status.completed_steps:
                logger.debug("Skipping completed step", migration_id=self.migration_id, step=step.name)
                continue
            steps.append(await self._run_step(index, step, repo, options))

    async def _run_step(self,
                        index: int,
                        step: MigrationStep,
                        repo: Optional[GarageRepository],
                        options: MigrationOptions) -> StepResult:
        # Whole collection validated before any batch is written
        items = self._collectors[step.table]()
        total = len(items)

        start = 0
        previous = await self.tracker.get_step_checkpoints(step.name)
        if options.resume and previous:
            start = min(previous[-1].data.processed_records, total)

        metadata = {"dryRun": True} if options.dry_run else None
        processed = start
        for offset in range(start, total, options.batch_size):
            batch = items[offset:offset + options.batch_size]
            if repo is not None:
                await self._writers[step.table](repo, [payload for _, payload in batch])
            processed = offset + len(batch)

            await self.tracker.create_checkpoint(
                step.name,
                {
                    "total_records": total,
                    "processed_records": processed,
                    "current_table": step.table,
                    "last_processed_key": batch[-1][0],
                },
                metadata,
            )

        await self.tracker.update_status(completed_steps=index + 1)
        logger.info("Step completed", migration_id=self.migration_id, step=step.name,
                    total=total, skipped=start)
        return StepResult(
            step=step.name,
            table=step.table,
            total_records=total,
            processed_records=processed - start,
            skipped_records=start,
        )

    # ============= Collect + validate =============

    def _garage_configs(self) -> Dict[str, GarageConfig]:
        return dict(self.memory_store.garage_config)

    def _spot_garage_name(self) -> str:
        return mappers.spot_garage_name(self._garage_configs(), self.default_garage_name)

    def _collect_garages(self) -> Items:
        configs = self._garage_configs()
        items = {}
        for key, config in configs.items():
            mappers.validate_garage(key, config)
            if config.name in items:
                raise ConstraintViolationError(
                    f"Garage name {config.name} is used by more than one config",
                    table="garages", field="name", record_id=key,
                )
            items[config.name] = config

        if not items and self.memory_store.spots:
            items[self.default_garage_name] = GarageConfig(
                name=self.default_garage_name,
                description="Default parking garage",
                total_spots=len(self.memory_store.spots),
            )
        return sorted(items.items())

    def _collect_floors(self) -> Items:
        items = {}
        for config in self._garage_configs().values():
            for floor in config.floors:
                items[(config.name, floor.number)] = (config.name, floor.number, floor)

        spot_garage = self._spot_garage_name()
        for spot in self.memory_store.spots.values():
            key = (spot_garage, spot.floor)
            if key not in items:
                items[key] = (spot_garage, spot.floor, None)

        return [(f"{name}#{number}", items[(name, number)]) for name, number in sorted(items)]

    def _collect_spots(self) -> Items:
        plates = set(self.memory_store.vehicles)
        spots = []
        for key, spot in self.memory_store.spots.items():
            mappers.validate_spot(key, spot)
            if spot.current_vehicle is not None and spot.current_vehicle not in plates:
                raise ConstraintViolationError(
                    f"Spot {spot.id} is occupied by unknown vehicle {spot.current_vehicle}",
                    table="spots", field="current_license_plate", record_id=spot.id,
                )
            spots.append(spot)
        spots.sort(key=mappers.spot_natural_key)
        return [(spot.id, spot) for spot in spots]

    def _collect_vehicles(self) -> Items:
        spot_ids = set(self.memory_store.spots)
        vehicles = []
        for key, vehicle in self.memory_store.vehicles.items():
            mappers.validate_vehicle(key, vehicle)
            if vehicle.is_parked and vehicle.spot_id and vehicle.spot_id not in spot_ids:
                raise ConstraintViolationError(
                    f"Vehicle {vehicle.license_plate} is parked in unknown spot {vehicle.spot_id}",
                    table="vehicles", field="current_spot_id", record_id=vehicle.license_plate,
                )
            vehicles.append(vehicle)
        vehicles.sort(key=lambda vehicle: vehicle.license_plate)
        return [(vehicle.license_plate, vehicle) for vehicle in vehicles]

    def _collect_sessions(self) -> Items:
        spot_ids = set(self.memory_store.spots)
        items = []
        active_spots = {}
        for vehicle in self.memory_store.vehicles.values():
            if not mappers.has_session(vehicle):
                continue
            mappers.validate_session(vehicle, spot_ids)
            if vehicle.status == VehicleStatus.PARKED:
                holder = active_spots.setdefault(vehicle.spot_id, vehicle.license_plate)
                if holder != vehicle.license_plate:
                    raise ConstraintViolationError(
                        f"Spot {vehicle.spot_id} has active sessions for {holder} and {vehicle.license_plate}",
                        table="parking_sessions", field="spot_id", record_id=vehicle.license_plate,
                    )
            items.append((mappers.session_key(vehicle.license_plate, vehicle.check_in_time), vehicle))
        return sorted(items, key=lambda item: item[0])

    def _collect_payments(self) -> Items:
        items = []
        for vehicle in self.memory_store.vehicles.values():
            if not mappers.has_payment(vehicle):
                continue
            mappers.validate_payment(vehicle)
            key = mappers.session_key(vehicle.license_plate, vehicle.check_in_time)
            items.append((mappers.payment_number(key), vehicle))
        return sorted(items, key=lambda item: item[0])

    # ============= Batch writers =============

    def _stamp(self, record: Dict[str, Any]) -> Dict[str, Any]:
        record["migration_id"] = self.migration_id
        return record

    @staticmethod
    def _require(mapping: Dict[Any, int], key: Any, table: str, field: str, record_id: str) -> int:
        value = mapping.get(key)
        if value is None:
            raise ConstraintViolationError(
                f"{table} record {record_id} references missing {field} {key}",
                table=table, field=field, record_id=record_id,
            )
        return value

    async def _spot_garage_id(self, repo: GarageRepository) -> int:
        name = self._spot_garage_name()
        return self._require(await repo.get_garage_ids(), name, "spots", "garage_id", name)

    async def _write_garages(self, repo: GarageRepository, configs: List[GarageConfig]) -> None:
        await repo.upsert(GarageRow, [self._stamp(mappers.garage_record(config)) for config in configs])

    async def _write_floors(self, repo: GarageRepository, floors: List[tuple]) -> None:
        garage_ids = await repo.get_garage_ids()
        records = []
        for garage_name, number, floor in floors:
            garage_id = self._require(garage_ids, garage_name, "floors", "garage_id", f"{garage_name}#{number}")
            records.append(self._stamp(mappers.floor_record(garage_id, number, floor)))
        await repo.upsert(FloorRow, records)

    async def _write_spots(self, repo: GarageRepository, spots: List[Any]) -> None:
        garage_id = await self._spot_garage_id(repo)
        floor_ids = await repo.get_floor_ids()
        records = [
            self._stamp(mappers.spot_record(spot, garage_id, floor_ids.get((garage_id, spot.floor))))
            for spot in spots
        ]
        await repo.upsert(SpotRow, records)

    async def _write_vehicles(self, repo: GarageRepository, vehicles: List[Any]) -> None:
        spot_ids = await repo.get_spot_ids(await self._spot_garage_id(repo)) if self.memory_store.spots else {}
        records = []
        for vehicle in vehicles:
            current_spot_id = None
            if vehicle.is_parked and vehicle.spot_id:
                current_spot_id = self._require(
                    spot_ids, vehicle.spot_id, "vehicles", "current_spot_id", vehicle.license_plate
                )
            records.append(self._stamp(mappers.vehicle_record(vehicle, current_spot_id)))
        await repo.upsert(VehicleRow, records)

    async def _write_sessions(self, repo: GarageRepository, vehicles: List[Any]) -> None:
        garage_id = await self._spot_garage_id(repo)
        spot_ids = await repo.get_spot_ids(garage_id)
        vehicle_ids = await repo.get_vehicle_ids()
        records = []
        for vehicle in vehicles:
            plate = vehicle.license_plate
            records.append(self._stamp(mappers.session_record(
                vehicle,
                garage_id,
                self._require(spot_ids, vehicle.spot_id, "parking_sessions", "spot_id", plate),
                self._require(vehicle_ids, plate, "parking_sessions", "vehicle_id", plate),
            )))
        await repo.upsert(ParkingSessionRow, records)

    async def _write_payments(self, repo: GarageRepository, vehicles: List[Any]) -> None:
        session_ids = await repo.get_session_ids()
        records = []
        for vehicle in vehicles:
            key = mappers.session_key(vehicle.license_plate, vehicle.check_in_time)
            session_id = self._require(session_ids, key, "payments", "session_id", vehicle.license_plate)
            records.append(self._stamp(mappers.payment_record(vehicle, session_id)))
        await repo.upsert(PaymentRow, records)
