"""
Unit tests for DataValidator
Tests cross-store comparison, dangling references and relational invariants
"""

from datetime import datetime, timedelta

import pytest

from garage_data.data import GarageRepository
from garage_data.data.models import GarageRow, ParkingSessionRow, PaymentRow, SpotRow, VehicleRow
from garage_data.migration import DataValidator, IssueType
from garage_data.models import Vehicle, VehicleType


async def insert(store, model, records):
    async with store.session() as session:
        await GarageRepository(session).upsert(model, records)


class TestDataIntegrity:
    """Test memory vs relational comparison"""

    @pytest.mark.asyncio
    async def test_empty_stores_match(self, memory_store, relational_store):
        result = await DataValidator(memory_store, relational_store).validate_data_integrity()

        assert result.success
        assert result.errors == []
        assert result.statistics.total_records == 0

    @pytest.mark.asyncio
    async def test_vehicle_type_mismatch_reports_memory_value(self, memory_store, relational_store):
        memory_store.add_vehicle(Vehicle(license_plate="TEST123", vehicle_type=VehicleType.STANDARD))
        await insert(relational_store, VehicleRow, [{"license_plate": "TEST123", "vehicle_type": "COMPACT"}])

        result = await DataValidator(memory_store, relational_store).validate_data_integrity()

        assert not result.success
        [issue] = result.errors
        assert issue.type == IssueType.MISMATCH
        assert issue.table == "vehicles"
        assert issue.field == "vehicle_type"
        assert issue.record_id == "TEST123"
        assert issue.expected == "standard"
        assert issue.actual == "COMPACT"
        assert result.statistics.total_records == 1
        assert result.statistics.valid_records == 0
        assert result.statistics.invalid_records == 1

    @pytest.mark.asyncio
    async def test_matching_vehicle(self, memory_store, relational_store):
        memory_store.add_vehicle(Vehicle(license_plate="TEST123", make="Volvo"))
        await insert(relational_store, VehicleRow, [
            {"license_plate": "TEST123", "vehicle_type": "STANDARD", "make": "Volvo"},
        ])

        result = await DataValidator(memory_store, relational_store).validate_data_integrity()

        assert result.success
        assert result.table_results["vehicles"].matched == 1
        assert result.statistics.valid_records == 1

    @pytest.mark.asyncio
    async def test_missing_vehicle(self, memory_store, relational_store):
        memory_store.add_vehicle(Vehicle(license_plate="TEST123"))

        result = await DataValidator(memory_store, relational_store).validate_data_integrity()

        [issue] = result.errors
        assert issue.type == IssueType.MISSING
        assert issue.record_id == "TEST123"
        assert result.statistics.missing_records == 1

    @pytest.mark.asyncio
    async def test_extra_relational_vehicle(self, memory_store, relational_store):
        await insert(relational_store, VehicleRow, [{"license_plate": "GHOST1"}])

        result = await DataValidator(memory_store, relational_store).validate_data_integrity()

        assert not result.success
        [issue] = result.errors
        assert issue.type == IssueType.MISMATCH
        assert issue.record_id == "GHOST1"

    @pytest.mark.asyncio
    async def test_validation_does_not_modify_stores(self, memory_store, relational_store):
        memory_store.add_vehicle(Vehicle(license_plate="TEST123"))
        before = memory_store.snapshot()

        await DataValidator(memory_store, relational_store).validate_all()

        assert memory_store.snapshot() == before
        async with relational_store.session() as session:
            assert await GarageRepository(session).count_rows(VehicleRow) == 0


class TestRelationships:
    """Test dangling reference detection"""

    @pytest.mark.asyncio
    async def test_dangling_session_references(self, memory_store, unchecked_store):
        await insert(unchecked_store, ParkingSessionRow, [{
            "session_key": "ORPHAN@2026-01-01T10:00:00",
            "garage_id": 999,
            "spot_id": 999,
            "vehicle_id": 999,
            "check_in_time": datetime(2026, 1, 1, 10),
        }])

        issues = await DataValidator(memory_store, unchecked_store).validate_relationships()

        fields = sorted(issue.field for issue in issues)
        assert fields == ["garage_id", "spot_id", "vehicle_id"]
        assert all(issue.type == IssueType.CONSTRAINT for issue in issues)
        assert all(issue.table == "parking_sessions" for issue in issues)

    @pytest.mark.asyncio
    async def test_dangling_occupant_plate(self, memory_store, unchecked_store):
        await insert(unchecked_store, GarageRow, [{"name": "Main Garage"}])
        await insert(unchecked_store, SpotRow, [{
            "garage_id": 1, "floor": 1, "bay": 1, "spot_number": 1, "spot_code": "F1-B1-S001",
            "status": "OCCUPIED", "current_license_plate": "GONE1",
        }])

        issues = await DataValidator(memory_store, unchecked_store).validate_relationships()

        [issue] = issues
        assert issue.table == "spots"
        assert issue.field == "current_license_plate"
        assert issue.actual == "GONE1"

    @pytest.mark.asyncio
    async def test_clean_references(self, memory_store, relational_store):
        assert await DataValidator(memory_store, relational_store).validate_relationships() == []


class TestBusinessInvariants:
    """Test relational invariants"""

    @pytest.mark.asyncio
    async def test_two_active_sessions_for_one_vehicle(self, memory_store, unchecked_store):
        start = datetime(2026, 1, 1, 10)
        await insert(unchecked_store, ParkingSessionRow, [
            {"session_key": "A", "garage_id": 1, "spot_id": 1, "vehicle_id": 7, "check_in_time": start},
            {"session_key": "B", "garage_id": 1, "spot_id": 2, "vehicle_id": 7, "check_in_time": start},
        ])

        issues = await DataValidator(memory_store, unchecked_store).validate_business_invariants()

        assert [(issue.field, issue.record_id) for issue in issues] == [("vehicle_id", "7")]

    @pytest.mark.asyncio
    async def test_session_and_payment_invariants(self, memory_store, unchecked_store):
        start = datetime(2026, 1, 1, 10)
        await insert(unchecked_store, ParkingSessionRow, [
            {"session_key": "BACKWARDS", "garage_id": 1, "spot_id": 1, "vehicle_id": 1,
             "status": "COMPLETED", "check_in_time": start, "check_out_time": start - timedelta(hours=1),
             "total_amount": 5.0},
            {"session_key": "PRICED", "garage_id": 1, "spot_id": 2, "vehicle_id": 2,
             "status": "ACTIVE", "check_in_time": start, "total_amount": 5.0},
        ])
        await insert(unchecked_store, PaymentRow, [
            {"payment_number": "PAY-1", "session_id": 1, "amount": 5.0, "status": "COMPLETED",
             "refund_amount": 10.0},
            {"payment_number": "PAY-2", "session_id": 1, "amount": 5.0, "status": "PENDING",
             "refund_amount": 1.0},
        ])

        issues = await DataValidator(memory_store, unchecked_store).validate_business_invariants()

        found = sorted((issue.table, issue.field, issue.record_id) for issue in issues)
        assert found == [
            ("parking_sessions", "check_out_time", "BACKWARDS"),
            ("parking_sessions", "total_amount", "PRICED"),
            ("payments", "refund_amount", "PAY-1"),
            ("payments", "status", "PAY-2"),
        ]

    @pytest.mark.asyncio
    async def test_occupied_spot_without_plate(self, memory_store, relational_store):
        await insert(relational_store, GarageRow, [{"name": "Main Garage"}])
        await insert(relational_store, SpotRow, [{
            "garage_id": 1, "floor": 1, "bay": 1, "spot_number": 1, "spot_code": "F1-B1-S001",
            "status": "OCCUPIED",
        }])

        issues = await DataValidator(memory_store, relational_store).validate_business_invariants()

        [issue] = issues
        assert issue.table == "spots"
        assert issue.record_id == "F1-B1-S001"

    @pytest.mark.asyncio
    async def test_validate_all_combines_checks(self, memory_store, relational_store):
        await insert(relational_store, GarageRow, [{"name": "Main Garage"}])
        await insert(relational_store, SpotRow, [{
            "garage_id": 1, "floor": 1, "bay": 1, "spot_number": 1, "spot_code": "F1-B1-S001",
            "status": "OCCUPIED",
        }])

        result = await DataValidator(memory_store, relational_store).validate_all()

        assert not result.success
        assert result.statistics.invalid_records == len(result.errors)
        assert any(issue.table == "spots" and issue.type == IssueType.CONSTRAINT for issue in result.errors)
