from collections import defaultdict
from datetime import datetime
from typing import Iterable, List, Optional

from clock import ClockSource, as_utc
from repository import RentalRepository
from schemas import (
    AvailabilityState, FleetVehicleStatus, RentalInfo, VehicleAvailability
)


class AvailabilityOracle:
    def __init__(self, repository: RentalRepository, clock: ClockSource):
        self.repository = repository
        self.clock = clock

    def status(self, vehicle_id: int, now: Optional[datetime] = None) -> VehicleAvailability:
        """Current state of a vehicle computed from its non-terminal rentals."""
        self.repository.get_vehicle(vehicle_id)
        now = as_utc(now) if now is not None else self.clock.now()
        rentals = self.repository.list_non_terminal_rentals(vehicle_id)
        return compute_availability(vehicle_id, rentals, now)

    def fleet_status(self, now: Optional[datetime] = None) -> List[FleetVehicleStatus]:
        now = as_utc(now) if now is not None else self.clock.now()
        by_vehicle = defaultdict(list)
        for rental in self.repository.list_non_terminal_rentals():
            by_vehicle[rental.vehicle_id].append(rental)

        return [
            FleetVehicleStatus(
                vehicle=vehicle,
                availability=compute_availability(vehicle.id, by_vehicle[vehicle.id], now)
            )
            for vehicle in self.repository.list_vehicles()
        ]


def compute_availability(vehicle_id: int, rentals: Iterable[RentalInfo], now: datetime) -> VehicleAvailability:
    upcoming = []
    for rental in rentals:
        if rental.status.is_terminal:
            continue
        if rental.start_at <= now < rental.end_at:
            return VehicleAvailability(vehicle_id=vehicle_id, state=AvailabilityState.RENTED)
        if rental.start_at > now:
            upcoming.append(rental.start_at)

    if upcoming:
        return VehicleAvailability(
            vehicle_id=vehicle_id,
            state=AvailabilityState.RESERVED,
            next_reservation_start=min(upcoming)
        )
    return VehicleAvailability(vehicle_id=vehicle_id, state=AvailabilityState.AVAILABLE)


def next_reservation_start(rentals: Iterable[RentalInfo], now: datetime) -> Optional[datetime]:
    starts = [r.start_at for r in rentals if not r.status.is_terminal and r.start_at > now]
    return min(starts) if starts else None
