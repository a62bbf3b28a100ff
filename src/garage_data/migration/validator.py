"""
Data Validator
Read-only comparison of the memory store against the relational store,
plus relational reference and invariant checks. Never repairs anything.
"""

import logging
from collections import Counter
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

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
from ..models.enums import PaymentStatus, SessionStatus, SpotStatus
from ..storage.memory_store import KeyedMemoryStore
from . import mappers

logger = logging.getLogger(__name__)


class IssueType(str, Enum):
    """Kinds of validation findings"""
    MISSING = "missing"
    MISMATCH = "mismatch"
    CORRUPT = "corrupt"
    CONSTRAINT = "constraint"


class ValidationIssue(BaseModel):
    type: IssueType
    table: str
    field: Optional[str] = None
    record_id: Optional[str] = None
    expected: Any = None
    actual: Any = None
    message: str


class TableResult(BaseModel):
    memory_count: int = 0
    relational_count: int = 0
    matched: int = 0
    errors: List[ValidationIssue] = Field(default_factory=list)


class ValidationStatistics(BaseModel):
    total_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    missing_records: int = 0


class ValidationResult(BaseModel):
    success: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    statistics: ValidationStatistics = Field(default_factory=ValidationStatistics)
    table_results: Dict[str, TableResult] = Field(default_factory=dict)


class DataValidator:
    """Validates migrated data between the two stores"""

    def __init__(self,
                 memory_store: KeyedMemoryStore,
                 relational_store: RelationalStore,
                 default_garage_name: str = "Main Garage"):
        self.memory_store = memory_store
        self.relational_store = relational_store
        self.default_garage_name = default_garage_name

    # ============= Cross-store Integrity =============

    async def validate_data_integrity(self) -> ValidationResult:
        """
        Match memory records to relational rows by natural key and compare
        their migration-significant fields.

        Expected values are reported as held in memory; comparison happens
        after mapping them to their relational form.
        """
        table_results: Dict[str, TableResult] = {}
        try:
            async with self.relational_store.session() as session:
                repo = GarageRepository(session)
                garages = await repo.fetch_all(GarageRow)
                spots = await repo.fetch_all(SpotRow)
                vehicles = await repo.fetch_all(VehicleRow)
                sessions = await repo.fetch_all(ParkingSessionRow)
                payments = await repo.fetch_all(PaymentRow)

        except SQLAlchemyError as e:
            logger.error(f"Integrity validation could not read the relational store: {e}")
            issue = ValidationIssue(
                type=IssueType.CORRUPT,
                table="relational",
                message=f"Validation failed: {e}",
            )
            return ValidationResult(
                success=False,
                errors=[issue],
                statistics=ValidationStatistics(invalid_records=1),
            )

        garage_configs = dict(self.memory_store.garage_config)
        memory_spots = dict(self.memory_store.spots)
        memory_vehicles = dict(self.memory_store.vehicles)

        table_results["garages"] = self._validate_garages(garage_configs, memory_spots, garages)
        table_results["spots"] = self._validate_spots(garage_configs, memory_spots, garages, spots)
        table_results["vehicles"] = self._validate_vehicles(memory_vehicles, vehicles)
        table_results["parking_sessions"] = self._validate_sessions(memory_vehicles, sessions)
        table_results["payments"] = self._validate_payments(memory_vehicles, payments)

        errors = [issue for result in table_results.values() for issue in result.errors]
        total = sum(result.memory_count for result in table_results.values())
        valid = sum(result.matched for result in table_results.values())

        result = ValidationResult(
            success=not errors,
            errors=errors,
            statistics=ValidationStatistics(
                total_records=total,
                valid_records=valid,
                invalid_records=len(errors),
                missing_records=total - valid,
            ),
            table_results=table_results,
        )
        logger.info(f"Integrity validation: {valid}/{total} records valid, {len(errors)} errors")
        return result

    def _expected_garages(self, garage_configs, memory_spots) -> Dict[str, Any]:
        expected = {config.name: config for config in garage_configs.values()}
        if not expected and memory_spots:
            expected[self.default_garage_name] = None
        return expected

    def _validate_garages(self, garage_configs, memory_spots, rows) -> TableResult:
        expected = self._expected_garages(garage_configs, memory_spots)
        by_name = {row.name: row for row in rows}
        result = TableResult(memory_count=len(expected), relational_count=len(rows))

        for name, config in expected.items():
            row = by_name.get(name)
            if row is None:
                result.errors.append(self._missing("garages", name, f"Garage {name} not found in relational store"))
                continue
            issues = []
            if config is not None:
                issues += self._compare("garages", name, "description", config.description, config.description, row.description)
                issues += self._compare("garages", name, "is_active", config.is_active, config.is_active, row.is_active)
            result.errors.extend(issues)
            if not issues:
                result.matched += 1
        return result

    def _validate_spots(self, garage_configs, memory_spots, garages, rows) -> TableResult:
        garage_name = mappers.spot_garage_name(garage_configs, self.default_garage_name)
        garage_ids = {row.name: row.id for row in garages}
        target_id = garage_ids.get(garage_name)
        by_code = {row.spot_code: row for row in rows if row.garage_id == target_id}
        result = TableResult(memory_count=len(memory_spots), relational_count=len(rows))

        for spot_id, spot in memory_spots.items():
            row = by_code.get(spot_id)
            if row is None:
                result.errors.append(self._missing("spots", spot_id, f"Spot {spot_id} not found in relational store"))
                continue
            issues = []
            issues += self._compare("spots", spot_id, "type", spot.type.value,
                                    mappers.map_spot_type(spot.type), row.type)
            issues += self._compare("spots", spot_id, "status", spot.status.value,
                                    mappers.map_spot_status(spot.status), row.status)
            issues += self._compare("spots", spot_id, "current_license_plate", spot.current_vehicle,
                                    spot.current_vehicle, row.current_license_plate)
            result.errors.extend(issues)
            if not issues:
                result.matched += 1
        return result

    def _validate_vehicles(self, memory_vehicles, rows) -> TableResult:
        by_plate = {row.license_plate: row for row in rows}
        result = TableResult(memory_count=len(memory_vehicles), relational_count=len(rows))

        for plate, vehicle in memory_vehicles.items():
            row = by_plate.get(plate)
            if row is None:
                result.errors.append(self._missing(
                    "vehicles", plate, f"Vehicle with license plate {plate} not found in relational store"))
                continue
            issues = []
            issues += self._compare("vehicles", plate, "vehicle_type", vehicle.vehicle_type.value,
                                    mappers.map_vehicle_type(vehicle.vehicle_type), row.vehicle_type)
            for field in ("make", "model", "color", "year"):
                value = getattr(vehicle, field)
                issues += self._compare("vehicles", plate, field, value, value, getattr(row, field))
            result.errors.extend(issues)
            if not issues:
                result.matched += 1

        for row in rows:
            if row.license_plate not in memory_vehicles:
                result.errors.append(ValidationIssue(
                    type=IssueType.MISMATCH,
                    table="vehicles",
                    record_id=row.license_plate,
                    message=f"Vehicle {row.license_plate} exists in relational store but not in memory",
                ))
        return result

    def _validate_sessions(self, memory_vehicles, rows) -> TableResult:
        by_key = {row.session_key: row for row in rows}
        with_sessions = [vehicle for vehicle in memory_vehicles.values() if mappers.has_session(vehicle)]
        result = TableResult(memory_count=len(with_sessions), relational_count=len(rows))

        for vehicle in with_sessions:
            key = mappers.session_key(vehicle.license_plate, vehicle.check_in_time)
            row = by_key.get(key)
            if row is None:
                result.errors.append(self._missing("parking_sessions", key, f"Session {key} not found in relational store"))
                continue
            expected = mappers.session_record(vehicle, row.garage_id, row.spot_id, row.vehicle_id)
            issues = []
            issues += self._compare("parking_sessions", key, "status", vehicle.status.value,
                                    expected["status"], row.status)
            issues += self._compare("parking_sessions", key, "check_out_time", vehicle.check_out_time,
                                    expected["check_out_time"], row.check_out_time)
            issues += self._compare("parking_sessions", key, "total_amount", vehicle.total_amount,
                                    expected["total_amount"], row.total_amount)
            result.errors.extend(issues)
            if not issues:
                result.matched += 1
        return result

    def _validate_payments(self, memory_vehicles, rows) -> TableResult:
        by_number = {row.payment_number: row for row in rows}
        paid = [vehicle for vehicle in memory_vehicles.values() if mappers.has_payment(vehicle)]
        result = TableResult(memory_count=len(paid), relational_count=len(rows))

        for vehicle in paid:
            number = mappers.payment_number(mappers.session_key(vehicle.license_plate, vehicle.check_in_time))
            row = by_number.get(number)
            if row is None:
                result.errors.append(self._missing(
                    "payments", number, f"Payment of {vehicle.license_plate} not found in relational store"))
                continue
            issues = []
            issues += self._compare("payments", number, "amount", vehicle.total_amount, vehicle.total_amount, row.amount)
            issues += self._compare("payments", number, "refund_amount", vehicle.refund_amount,
                                    vehicle.refund_amount, row.refund_amount)
            result.errors.extend(issues)
            if not issues:
                result.matched += 1
        return result

    @staticmethod
    def _missing(table: str, record_id: str, message: str) -> ValidationIssue:
        return ValidationIssue(type=IssueType.MISSING, table=table, record_id=record_id, message=message)

    @staticmethod
    def _compare(table: str, record_id: str, field: str, expected: Any, mapped: Any, actual: Any) -> List[ValidationIssue]:
        if mapped == actual:
            return []
        return [ValidationIssue(
            type=IssueType.MISMATCH,
            table=table,
            field=field,
            record_id=record_id,
            expected=expected,
            actual=actual,
            message=f"{table}.{field} mismatch for {record_id}: expected {expected!r}, got {actual!r}",
        )]

    # ============= Relational References =============

    async def validate_relationships(self) -> List[ValidationIssue]:
        """Relational references that point at rows which do not exist"""
        errors: List[ValidationIssue] = []
        try:
            async with self.relational_store.session() as session:
                repo = GarageRepository(session)
                garages = await repo.fetch_all(GarageRow)
                floors = await repo.fetch_all(FloorRow)
                spots = await repo.fetch_all(SpotRow)
                vehicles = await repo.fetch_all(VehicleRow)
                sessions = await repo.fetch_all(ParkingSessionRow)
                payments = await repo.fetch_all(PaymentRow)
        except SQLAlchemyError as e:
            logger.error(f"Relationship validation failed: {e}")
            return [ValidationIssue(type=IssueType.CORRUPT, table="relationships",
                                    message=f"Relationship validation failed: {e}")]

        garage_ids = {row.id for row in garages}
        floor_ids = {row.id for row in floors}
        spot_ids = {row.id for row in spots}
        vehicle_ids = {row.id for row in vehicles}
        session_ids = {row.id for row in sessions}
        plates = {row.license_plate for row in vehicles}

        def dangling(table, field, row, target, value):
            errors.append(ValidationIssue(
                type=IssueType.CONSTRAINT,
                table=table,
                field=field,
                record_id=str(row.id),
                actual=value,
                message=f"{table} row {row.id} references non-existent {target} {value}",
            ))

        for row in floors:
            if row.garage_id not in garage_ids:
                dangling("floors", "garage_id", row, "garage", row.garage_id)
        for row in spots:
            if row.garage_id not in garage_ids:
                dangling("spots", "garage_id", row, "garage", row.garage_id)
            if row.floor_id is not None and row.floor_id not in floor_ids:
                dangling("spots", "floor_id", row, "floor", row.floor_id)
            if row.current_license_plate is not None and row.current_license_plate not in plates:
                dangling("spots", "current_license_plate", row, "vehicle", row.current_license_plate)
        for row in vehicles:
            if row.current_spot_id is not None and row.current_spot_id not in spot_ids:
                dangling("vehicles", "current_spot_id", row, "spot", row.current_spot_id)
        for row in sessions:
            if row.vehicle_id not in vehicle_ids:
                dangling("parking_sessions", "vehicle_id", row, "vehicle", row.vehicle_id)
            if row.spot_id not in spot_ids:
                dangling("parking_sessions", "spot_id", row, "spot", row.spot_id)
            if row.garage_id not in garage_ids:
                dangling("parking_sessions", "garage_id", row, "garage", row.garage_id)
        for row in payments:
            if row.session_id not in session_ids:
                dangling("payments", "session_id", row, "session", row.session_id)

        return errors

    # ============= Relational Invariants =============

    async def validate_business_invariants(self) -> List[ValidationIssue]:
        """Session, payment and occupancy invariants over the relational rows"""
        errors: List[ValidationIssue] = []
        try:
            async with self.relational_store.session() as session:
                repo = GarageRepository(session)
                spots = await repo.fetch_all(SpotRow)
                sessions = await repo.fetch_all(ParkingSessionRow)
                payments = await repo.fetch_all(PaymentRow)
        except SQLAlchemyError as e:
            logger.error(f"Invariant validation failed: {e}")
            return [ValidationIssue(type=IssueType.CORRUPT, table="invariants",
                                    message=f"Invariant validation failed: {e}")]

        def violation(table, field, record_id, message):
            errors.append(ValidationIssue(
                type=IssueType.CONSTRAINT, table=table, field=field,
                record_id=str(record_id), message=message,
            ))

        active = [row for row in sessions if row.status == SessionStatus.ACTIVE.value]
        for vehicle_id, count in Counter(row.vehicle_id for row in active).items():
            if count > 1:
                violation("parking_sessions", "vehicle_id", vehicle_id,
                          f"Vehicle {vehicle_id} has {count} active sessions")
        for spot_id, count in Counter(row.spot_id for row in active).items():
            if count > 1:
                violation("parking_sessions", "spot_id", spot_id,
                          f"Spot {spot_id} has {count} active sessions")

        for row in sessions:
            if row.check_out_time is not None and row.check_out_time < row.check_in_time:
                violation("parking_sessions", "check_out_time", row.session_key,
                          f"Session {row.session_key} ends before it starts")
            if row.status == SessionStatus.ACTIVE.value and row.total_amount is not None:
                violation("parking_sessions", "total_amount", row.session_key,
                          f"Active session {row.session_key} already has an amount")

        refundable = {PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value}
        for row in payments:
            refund = row.refund_amount or 0.0
            if refund > (row.amount or 0.0):
                violation("payments", "refund_amount", row.payment_number,
                          f"Payment {row.payment_number} refunds more than its amount")
            if refund > 0 and row.status not in refundable:
                violation("payments", "status", row.payment_number,
                          f"Payment {row.payment_number} refunded from status {row.status}")

        occupied = SpotStatus.OCCUPIED.value.upper()
        for row in spots:
            if (row.status == occupied) != (row.current_license_plate is not None):
                violation("spots", "current_license_plate", row.spot_code,
                          f"Spot {row.spot_code} status {row.status} disagrees with its occupant")

        return errors

    async def validate_all(self) -> ValidationResult:
        """Integrity, reference and invariant checks combined"""
        result = await self.validate_data_integrity()
        extra = await self.validate_relationships() + await self.validate_business_invariants()
        if not extra:
            return result
        errors = result.errors + extra
        statistics = result.statistics.model_copy(update={"invalid_records": len(errors)})
        return result.model_copy(update={"success": False, "errors": errors, "statistics": statistics})
