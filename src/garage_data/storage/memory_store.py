"""
In-process keyed memory store
Five keyed containers (spots, vehicles, garage config, floor/bay index,
occupied-id set) with O(1) access and no durability
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..models.domain import (
    GarageConfig,
    Spot,
    Vehicle,
    floor_bay_key,
    normalize_license_plate,
    utc_now,
)
from ..models.enums import SpotStatus, VehicleStatus

# Collection names used by snapshots and backup artifacts
SPOTS = "spots"
VEHICLES = "vehicles"
GARAGE_CONFIG = "garageConfig"
SPOTS_BY_FLOOR_BAY = "spotsByFloorBay"
OCCUPIED_SPOTS = "occupiedSpots"

COLLECTIONS = (SPOTS, VEHICLES, GARAGE_CONFIG, SPOTS_BY_FLOOR_BAY, OCCUPIED_SPOTS)


class OccupancyError(ValueError):
    """Raised when an occupy/vacate transition's preconditions do not hold"""


class KeyedMemoryStore:
    """
    Volatile keyed store for live garage state

    - One instance per process, passed explicitly to its users
    - Compound occupancy updates are single transitions under one mutex
    - clear()/reset() empty every container for test isolation
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()

        self.spots: Dict[str, Spot] = {}
        self.vehicles: Dict[str, Vehicle] = {}
        self.garage_config: Dict[str, GarageConfig] = {}
        self.spots_by_floor_bay: Dict[str, Set[str]] = {}
        self.occupied_spots: Set[str] = set()

    # ============= Spot Operations =============

    def add_spot(self, spot: Spot) -> Spot:
        """Insert or replace a spot, keeping the index and occupied set in step"""
        with self._lock:
            previous = self.spots.get(spot.id)
            if previous is not None:
                self._unindex_spot(previous)

            self.spots[spot.id] = spot
            self.spots_by_floor_bay.setdefault(floor_bay_key(spot.floor, spot.bay), set()).add(spot.id)
            if spot.is_occupied:
                self.occupied_spots.add(spot.id)
            else:
                self.occupied_spots.discard(spot.id)
            return spot

    def add_spots(self, spots: Iterable[Spot]) -> int:
        """Insert several spots; returns how many were added"""
        count = 0
        with self._lock:
            for spot in spots:
                self.add_spot(spot)
                count += 1
        return count

    def get_spot(self, spot_id: str) -> Optional[Spot]:
        return self.spots.get(spot_id)

    def remove_spot(self, spot_id: str) -> bool:
        """Delete a spot; occupied spots must be vacated first"""
        with self._lock:
            spot = self.spots.get(spot_id)
            if spot is None:
                return False
            if spot.is_occupied:
                raise OccupancyError(f"Spot {spot_id} is occupied by {spot.current_vehicle}")
            self._unindex_spot(spot)
            del self.spots[spot_id]
            return True

    def _unindex_spot(self, spot: Spot) -> None:
        key = floor_bay_key(spot.floor, spot.bay)
        members = self.spots_by_floor_bay.get(key)
        if members is not None:
            members.discard(spot.id)
            if not members:
                del self.spots_by_floor_bay[key]
        self.occupied_spots.discard(spot.id)

    # ============= Vehicle Operations =============

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """Insert or replace a vehicle keyed by its normalized plate"""
        with self._lock:
            self.vehicles[vehicle.license_plate] = vehicle
            return vehicle

    def get_vehicle(self, license_plate: str) -> Optional[Vehicle]:
        return self.vehicles.get(normalize_license_plate(license_plate))

    def remove_vehicle(self, license_plate: str) -> bool:
        """Delete a vehicle record; a parked vehicle must leave its spot first"""
        plate = normalize_license_plate(license_plate)
        with self._lock:
            if plate not in self.vehicles:
                return False
            if self._find_spot_of(plate) is not None:
                raise OccupancyError(f"Vehicle {plate} still occupies a spot")
            del self.vehicles[plate]
            return True

    # ============= Garage Configuration =============

    def set_garage_config(self, key: str, config: GarageConfig) -> GarageConfig:
        with self._lock:
            self.garage_config[key] = config
            return config

    def get_garage_config(self, key: str) -> Optional[GarageConfig]:
        return self.garage_config.get(key)

    # ============= Occupancy Transitions =============

    def occupy_spot(self,
                    spot_id: str,
                    license_plate: str,
                    expected_status: SpotStatus = SpotStatus.AVAILABLE) -> Spot:
        """
        Park a vehicle in a spot as one compare-and-swap transition.

        The spot must currently have ``expected_status`` and no occupant, the
        vehicle must exist and must not already occupy another spot. A vehicle
        whose previous session ended starts a new one. All new records are
        validated before any container is touched, so a failure leaves the
        store unchanged.

        Raises:
            OccupancyError: If any precondition fails
        """
        plate = normalize_license_plate(license_plate)
        with self._lock:
            spot = self.spots.get(spot_id)
            if spot is None:
                raise OccupancyError(f"Spot {spot_id} does not exist")
            if spot.status != expected_status or spot.is_occupied:
                raise OccupancyError(
                    f"Spot {spot_id} is {spot.status.value}, expected {expected_status.value}"
                )
            vehicle = self.vehicles.get(plate)
            if vehicle is None:
                raise OccupancyError(f"Vehicle {plate} is not registered")
            current = self._find_spot_of(plate)
            if current is not None:
                raise OccupancyError(f"Vehicle {plate} already occupies spot {current}")

            now = utc_now()
            occupied_spot = Spot.model_validate({
                **spot.model_dump(),
                "status": SpotStatus.OCCUPIED,
                "current_vehicle": plate,
                "updated_at": now,
            })
            parked_vehicle = Vehicle.model_validate({
                **vehicle.model_dump(),
                **self._session_start(vehicle, now),
                "spot_id": spot_id,
                "updated_at": now,
            })

            self.spots[spot_id] = occupied_spot
            self.occupied_spots.add(spot_id)
            self.vehicles[plate] = parked_vehicle

        self.logger.debug(f"Vehicle {plate} occupied spot {spot_id}")
        return occupied_spot

    def vacate_spot(self, spot_id: str) -> str:
        """
        Free an occupied spot as one transition.

        The former occupant's session is checked out at the same time, so the
        vehicle record no longer claims the spot.

        Returns:
            The plate of the former occupant

        Raises:
            OccupancyError: If the spot does not exist or is not occupied
        """
        with self._lock:
            spot = self.spots.get(spot_id)
            if spot is None:
                raise OccupancyError(f"Spot {spot_id} does not exist")
            if not spot.is_occupied:
                raise OccupancyError(f"Spot {spot_id} is not occupied")

            plate = spot.current_vehicle
            now = utc_now()
            freed_spot = Spot.model_validate({
                **spot.model_dump(),
                "status": SpotStatus.AVAILABLE,
                "current_vehicle": None,
                "updated_at": now,
            })
            vehicle = self.vehicles.get(plate)
            departed_vehicle = None
            if vehicle is not None and vehicle.spot_id == spot_id:
                departed_vehicle = Vehicle.model_validate({
                    **vehicle.model_dump(),
                    **self._session_end(vehicle, now),
                    "updated_at": now,
                })

            self.spots[spot_id] = freed_spot
            self.occupied_spots.discard(spot_id)
            if departed_vehicle is not None:
                self.vehicles[plate] = departed_vehicle

        self.logger.debug(f"Vehicle {plate} vacated spot {spot_id}")
        return plate

    @staticmethod
    def _session_start(vehicle: Vehicle, now) -> Dict[str, Any]:
        """Fields that open a parking session on a vehicle record"""
        if vehicle.is_parked:
            return {"check_in_time": vehicle.check_in_time or now}
        # A finished session is replaced by a new one
        return {
            "status": VehicleStatus.PARKED,
            "check_in_time": now,
            "check_out_time": None,
            "total_amount": 0.0,
            "is_paid": False,
            "payment_method": None,
            "refund_amount": 0.0,
        }

    @staticmethod
    def _session_end(vehicle: Vehicle, now) -> Dict[str, Any]:
        """Fields that close the vehicle's session when it leaves its spot"""
        if vehicle.check_in_time is None:
            return {"spot_id": None}
        if not vehicle.is_parked:
            return {}
        return {
            "status": VehicleStatus.COMPLETED if vehicle.is_paid else VehicleStatus.CHECKED_OUT_UNPAID,
            "check_out_time": now,
        }

    def _find_spot_of(self, plate: str) -> Optional[str]:
        for spot_id in self.occupied_spots:
            spot = self.spots.get(spot_id)
            if spot is not None and spot.current_vehicle == plate:
                return spot_id
        return None

    # ============= Queries =============

    def find_all(self) -> List[Spot]:
        return list(self.spots.values())

    def find_available(self) -> List[Spot]:
        """Spots without an occupant (any non-occupied status)"""
        return [spot for spot_id, spot in self.spots.items() if spot_id not in self.occupied_spots]

    def find_occupied(self) -> List[Spot]:
        """Spots holding a vehicle"""
        return [self.spots[spot_id] for spot_id in self.occupied_spots if spot_id in self.spots]

    def find_parkable(self) -> List[Spot]:
        """Spots a vehicle can be parked in right now"""
        return [spot for spot in self.spots.values() if spot.status == SpotStatus.AVAILABLE]

    def find_by_floor_bay(self, floor: int, bay: int) -> List[Spot]:
        ids = self.spots_by_floor_bay.get(floor_bay_key(floor, bay), set())
        return [self.spots[spot_id] for spot_id in sorted(ids) if spot_id in self.spots]

    def get_stats(self) -> Dict[str, int]:
        """Counts of spots by occupancy and distinct floor / floor-bay groups"""
        with self._lock:
            total = len(self.spots)
            occupied = len(self.occupied_spots)
            return {
                "totalSpots": total,
                "occupiedSpots": occupied,
                "availableSpots": total - occupied,
                "floors": len({spot.floor for spot in self.spots.values()}),
                "floorBayGroups": len(self.spots_by_floor_bay),
                "vehicles": len(self.vehicles),
                "garages": len(self.garage_config),
            }

    # ============= Lifecycle =============

    def clear(self) -> None:
        """Empty every container"""
        with self._lock:
            self.spots.clear()
            self.vehicles.clear()
            self.garage_config.clear()
            self.spots_by_floor_bay.clear()
            self.occupied_spots.clear()
        self.logger.info("Memory store cleared")

    def reset(self) -> None:
        """Alias of clear() used for test isolation"""
        self.clear()

    def snapshot(self) -> Dict[str, Any]:
        """
        JSON-ready copy of every container.

        Keyed containers become ordered [key, value] pairs; sets become sorted
        lists so two equal stores produce equal snapshots.
        """
        with self._lock:
            return {
                SPOTS: [[key, spot.model_dump(mode="json")] for key, spot in self.spots.items()],
                VEHICLES: [[key, vehicle.model_dump(mode="json")] for key, vehicle in self.vehicles.items()],
                GARAGE_CONFIG: [[key, config.model_dump(mode="json")] for key, config in self.garage_config.items()],
                SPOTS_BY_FLOOR_BAY: [[key, sorted(ids)] for key, ids in self.spots_by_floor_bay.items()],
                OCCUPIED_SPOTS: sorted(self.occupied_spots),
            }

    def export_state(self) -> Tuple[Dict[str, Any], Dict[str, int]]:
        """Snapshot and stats taken under one lock"""
        with self._lock:
            return self.snapshot(), self.get_stats()

    @classmethod
    def validate_snapshot(cls, data: Dict[str, Any]) -> Tuple[dict, dict, dict, dict, set]:
        """
        Parse and cross-check a snapshot without touching any store.

        Missing collections parse as empty.

        Raises:
            ValueError: If any record is invalid or the indexes disagree
        """
        spots = {key: Spot.model_validate(value) for key, value in data.get(SPOTS, [])}
        vehicles = {key: Vehicle.model_validate(value) for key, value in data.get(VEHICLES, [])}
        garage_config = {key: GarageConfig.model_validate(value) for key, value in data.get(GARAGE_CONFIG, [])}
        spots_by_floor_bay = {key: set(ids) for key, ids in data.get(SPOTS_BY_FLOOR_BAY, [])}
        occupied_spots = set(data.get(OCCUPIED_SPOTS, []))

        cls._check_consistency(spots, spots_by_floor_bay, occupied_spots)
        return spots, vehicles, garage_config, spots_by_floor_bay, occupied_spots

    def load_snapshot(self, data: Dict[str, Any]) -> None:
        """
        Replace every container with the contents of a snapshot.

        The containers are swapped only when the whole snapshot is valid.

        Raises:
            ValueError: If any record is invalid or the indexes disagree
        """
        spots, vehicles, garage_config, spots_by_floor_bay, occupied_spots = self.validate_snapshot(data)

        with self._lock:
            self.spots = spots
            self.vehicles = vehicles
            self.garage_config = garage_config
            self.spots_by_floor_bay = spots_by_floor_bay
            self.occupied_spots = occupied_spots

        self.logger.info(f"Memory store loaded: {len(spots)} spots, {len(vehicles)} vehicles")

    @staticmethod
    def _check_consistency(spots: Dict[str, Spot],
                           spots_by_floor_bay: Dict[str, Set[str]],
                           occupied_spots: Set[str]) -> None:
        for key, spot in spots.items():
            if key != spot.id:
                raise ValueError(f"Spot stored under {key} has id {spot.id}")

        expected_occupied = {spot.id for spot in spots.values() if spot.is_occupied}
        if expected_occupied != occupied_spots:
            raise ValueError("Occupied-spot set disagrees with spot occupants")

        indexed = set()
        for key, ids in spots_by_floor_bay.items():
            for spot_id in ids:
                spot = spots.get(spot_id)
                if spot is None or floor_bay_key(spot.floor, spot.bay) != key:
                    raise ValueError(f"Floor/bay index entry {key} -> {spot_id} is invalid")
                indexed.add(spot_id)
        if indexed != set(spots):
            raise ValueError("Floor/bay index does not cover every spot")

    def __len__(self) -> int:
        return len(self.spots)
