"""
Shared fixtures for garage data tests
Temporary data directories, a file-backed SQLite relational store and
memory store seeding helpers
"""

import shutil
import tempfile
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from garage_data.data import RelationalStore
from garage_data.models import Spot, Vehicle, VehicleStatus, utc_now
from garage_data.storage import KeyedMemoryStore
from garage_data.utils import DataPaths


def build_spots(count, floors=3, spots_per_bay=10):
    """Spots spread round-robin over floors, ten per bay"""
    spots = []
    for i in range(count):
        floor = i % floors + 1
        index = i // floors
        spots.append(Spot(floor=floor, bay=index // spots_per_bay + 1, spot_number=index % spots_per_bay + 1))
    return spots


def park(store, spot_id, plate, **fields):
    """Register a vehicle and park it in a spot"""
    store.add_vehicle(Vehicle(
        license_plate=plate,
        check_in_time=fields.pop("check_in_time", utc_now() - timedelta(hours=1)),
        **fields
    ))
    store.occupy_spot(spot_id, plate)
    return store.get_vehicle(plate)


def checked_out(plate, spot_id, status=VehicleStatus.COMPLETED, **fields):
    """Vehicle record of a finished session"""
    check_in = utc_now() - timedelta(hours=3)
    return Vehicle(
        license_plate=plate,
        spot_id=spot_id,
        check_in_time=check_in,
        check_out_time=check_in + timedelta(hours=2),
        status=status,
        **fields
    )


@pytest.fixture
def data_dir():
    path = Path(tempfile.mkdtemp(prefix="garage_data_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def paths(data_dir):
    return DataPaths(str(data_dir))


@pytest.fixture
def memory_store():
    store = KeyedMemoryStore()
    yield store
    store.reset()


@pytest_asyncio.fixture
async def relational_store(paths):
    store = RelationalStore(paths.database_url)
    await store.initialize()
    yield store
    await store.dispose()


@pytest_asyncio.fixture
async def unchecked_store(paths):
    """Relational store without foreign key enforcement, for corrupt-data scenarios"""
    store = RelationalStore(paths.database_url, enforce_foreign_keys=False)
    await store.initialize()
    yield store
    await store.dispose()
