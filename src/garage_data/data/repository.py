"""
Data Repository Pattern
Natural-key upserts, lookups and marker-based cleanup for the relational store
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Base,
    GarageRow,
    FloorRow,
    SpotRow,
    VehicleRow,
    ParkingSessionRow,
    PaymentRow,
    TABLES_IN_DEPENDENCY_ORDER,
    utc_naive_now,
)

# Natural key columns per table
NATURAL_KEYS: Dict[Type[Base], Tuple[str, ...]] = {
    GarageRow: ("name",),
    FloorRow: ("garage_id", "floor_number"),
    SpotRow: ("garage_id", "floor", "bay", "spot_number"),
    VehicleRow: ("license_plate",),
    ParkingSessionRow: ("session_key",),
    PaymentRow: ("payment_number",),
}

# Keys per lookup query; SQLite caps expression depth and bound parameters
LOOKUP_CHUNK_SIZE = 200


class GarageRepository:
    """Repository for relational garage data"""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session"""
        self.session = session
        self.logger = logging.getLogger(__name__)

    # ============= Upserts =============

    async def upsert(self, model: Type[Base], records: Sequence[Dict[str, Any]]) -> int:
        """
        Insert or update a batch of rows keyed by the table's natural key,
        committed as one transaction.

        Args:
            model: Mapped table class
            records: Column values; each must contain the natural key columns

        Returns:
            Number of rows written
        """
        if not records:
            return 0

        key_fields = NATURAL_KEYS[model]
        try:
            existing = await self._load_existing(model, key_fields, records)
            now = utc_naive_now()

            for record in records:
                key = tuple(record[field] for field in key_fields)
                row = existing.get(key)
                if row is None:
                    row = model(**record)
                    self.session.add(row)
                    existing[key] = row
                else:
                    for field, value in record.items():
                        setattr(row, field, value)
                    row.updated_at = now

            await self.session.commit()
            self.logger.debug(f"Upserted {len(records)} rows into {model.__tablename__}")
            return len(records)

        except Exception as e:
            await self.session.rollback()
            self.logger.error(f"Failed to upsert into {model.__tablename__}: {e}")
            raise

    async def _load_existing(self,
                             model: Type[Base],
                             key_fields: Tuple[str, ...],
                             records: Sequence[Dict[str, Any]]) -> Dict[tuple, Base]:
        """Existing rows matching the records' natural keys, queried in slices"""
        existing = {}
        for start in range(0, len(records), LOOKUP_CHUNK_SIZE):
            chunk = records[start:start + LOOKUP_CHUNK_SIZE]
            if len(key_fields) == 1:
                column = getattr(model, key_fields[0])
                condition = column.in_([record[key_fields[0]] for record in chunk])
            else:
                condition = or_(*[
                    and_(*[getattr(model, field) == record[field] for field in key_fields])
                    for record in chunk
                ])

            result = await self.session.execute(select(model).where(condition))
            for row in result.scalars().all():
                existing[tuple(getattr(row, field) for field in key_fields)] = row
        return existing

    # ============= Lookups =============

    async def get_garage_ids(self) -> Dict[str, int]:
        """Garage name -> id"""
        result = await self.session.execute(select(GarageRow.name, GarageRow.id))
        return {name: row_id for name, row_id in result.all()}

    async def get_floor_ids(self) -> Dict[Tuple[int, int], int]:
        """(garage_id, floor_number) -> id"""
        result = await self.session.execute(
            select(FloorRow.garage_id, FloorRow.floor_number, FloorRow.id)
        )
        return {(garage_id, number): row_id for garage_id, number, row_id in result.all()}

    async def get_spot_ids(self, garage_id: int) -> Dict[str, int]:
        """Spot code -> id within one garage"""
        result = await self.session.execute(
            select(SpotRow.spot_code, SpotRow.id).where(SpotRow.garage_id == garage_id)
        )
        return {code: row_id for code, row_id in result.all()}

    async def get_vehicle_ids(self) -> Dict[str, int]:
        """License plate -> id"""
        result = await self.session.execute(select(VehicleRow.license_plate, VehicleRow.id))
        return {plate: row_id for plate, row_id in result.all()}

    async def get_session_ids(self) -> Dict[str, int]:
        """Session key -> id"""
        result = await self.session.execute(
            select(ParkingSessionRow.session_key, ParkingSessionRow.id)
        )
        return {key: row_id for key, row_id in result.all()}

    async def fetch_all(self, model: Type[Base]) -> List[Base]:
        """Every row of a table ordered by id"""
        result = await self.session.execute(select(model).order_by(model.id))
        return list(result.scalars().all())

    # ============= Counts =============

    async def count_rows(self, model: Type[Base], migration_id: Optional[str] = None) -> int:
        query = select(func.count()).select_from(model)
        if migration_id is not None:
            query = query.where(model.migration_id == migration_id)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def count_by_migration(self, migration_id: str) -> Dict[str, int]:
        """Rows per table carrying the given origin marker"""
        counts = {}
        for model in TABLES_IN_DEPENDENCY_ORDER:
            counts[model.__tablename__] = await self.count_rows(model, migration_id)
        return counts

    async def table_counts(self) -> Dict[str, int]:
        counts = {}
        for model in TABLES_IN_DEPENDENCY_ORDER:
            counts[model.__tablename__] = await self.count_rows(model)
        return counts

    # ============= Cleanup =============

    async def delete_by_migration(self,
                                  migration_id: str,
                                  updated_before: Optional[datetime] = None) -> Dict[str, int]:
        """
        Delete rows carrying a migration's origin marker, children first,
        in one transaction.

        Args:
            migration_id: Origin marker to match
            updated_before: Only delete rows whose updated_at is at or before this time

        Returns:
            Deleted row count per table
        """
        deleted = {}
        try:
            for model in reversed(TABLES_IN_DEPENDENCY_ORDER):
                condition = model.migration_id == migration_id
                if updated_before is not None:
                    condition = and_(condition, model.updated_at <= updated_before)
                result = await self.session.execute(delete(model).where(condition))
                deleted[model.__tablename__] = result.rowcount or 0

            await self.session.commit()
            self.logger.info(f"Deleted rows of migration {migration_id}: {deleted}")
            return deleted

        except Exception as e:
            await self.session.rollback()
            self.logger.error(f"Failed to delete rows of migration {migration_id}: {e}")
            raise
