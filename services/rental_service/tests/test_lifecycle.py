from decimal import Decimal

import pytest

from conftest import at
from errors import ValidationError
from lifecycle import RentalLifecycle
from schemas import RentalStatus, VehicleStatus


@pytest.fixture
def lifecycle(repository, clock):
    return RentalLifecycle(repository, clock)


def test_pickup_activates_rental_and_records_vehicle_odometer(seed, repository, lifecycle, clock):
    vehicle = seed.vehicle(odometer=5400)
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8))

    updated = lifecycle.start_rental(rental.id)

    assert updated.status == RentalStatus.ACTIVE
    assert updated.start_odometer == 5400
    assert updated.picked_up_at == clock.now()
    assert repository.get_vehicle(vehicle.id).status == VehicleStatus.RENTED


def test_pickup_accepts_explicit_reading(seed, lifecycle):
    vehicle = seed.vehicle(odometer=5400)
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8), status="pending")

    assert lifecycle.start_rental(rental.id, Decimal(5412)).start_odometer == 5412


def test_pickup_reading_below_vehicle_odometer_is_rejected(seed, lifecycle):
    vehicle = seed.vehicle(odometer=5400)
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8))

    with pytest.raises(ValidationError):
        lifecycle.start_rental(rental.id, Decimal(5000))


@pytest.mark.parametrize("status", ["active", "completed", "cancelled", "void"])
def test_only_booked_rentals_can_be_picked_up(seed, lifecycle, status):
    vehicle = seed.vehicle()
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8), status=status)

    with pytest.raises(ValidationError):
        lifecycle.start_rental(rental.id)


def test_cancel_frees_the_window(seed, repository, lifecycle):
    vehicle = seed.vehicle()
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8))

    assert lifecycle.cancel_rental(rental.id).status == RentalStatus.CANCELLED
    assert repository.list_non_terminal_rentals(vehicle.id) == []


def test_void_of_active_rental_releases_vehicle(seed, repository, lifecycle):
    vehicle = seed.vehicle(status="rented")
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8), status="active")

    assert lifecycle.void_rental(rental.id).status == RentalStatus.VOID
    assert repository.get_vehicle(vehicle.id).status == VehicleStatus.AVAILABLE


def test_terminal_rental_cannot_be_cancelled(seed, lifecycle):
    vehicle = seed.vehicle()
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8), status="completed")

    with pytest.raises(ValidationError):
        lifecycle.cancel_rental(rental.id)
