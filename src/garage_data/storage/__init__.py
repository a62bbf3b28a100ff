"""
Memory storage package
Volatile keyed store holding live garage state
"""

from .memory_store import (
    KeyedMemoryStore,
    OccupancyError,
    COLLECTIONS,
    SPOTS,
    VEHICLES,
    GARAGE_CONFIG,
    SPOTS_BY_FLOOR_BAY,
    OCCUPIED_SPOTS,
)

__all__ = [
    'KeyedMemoryStore',
    'OccupancyError',
    'COLLECTIONS',
    'SPOTS',
    'VEHICLES',
    'GARAGE_CONFIG',
    'SPOTS_BY_FLOOR_BAY',
    'OCCUPIED_SPOTS',
]
