from decimal import Decimal

import pytest

from billing import BillingCalculator, compute_overage
from conftest import at
from errors import NotFoundError, ValidationError
from packages import PackageAssigner
from schemas import RentalStatus, VehicleStatus


@pytest.fixture
def billing(repository, clock):
    return BillingCalculator(repository, PackageAssigner(repository), clock)


@pytest.fixture
def fleet(seed):
    model = seed.model()
    vehicle = seed.vehicle(model.id, status="rented", odometer=1000)
    return model, vehicle


def active_rental(seed, vehicle, **fields):
    fields.setdefault("start_odometer", Decimal(1000))
    return seed.rental(vehicle.id, at(1, 8), at(2, 8), status="active", **fields)


def test_overage_beyond_package_allowance(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.package(model.id, included=100, rate=2)
    seed.price(model.id, "daily", 300)
    rental = active_rental(seed, vehicle)

    result = billing.finalize_checkout(rental.id, Decimal(1150))

    assert result.total_distance == 150
    assert result.overage_charge == 100
    assert result.unit_price == 300
    assert result.pricing_fallback is False
    stored = repository.get_rental(rental.id)
    assert stored.total_amount == 400
    assert stored.ending_odometer == 1150
    assert stored.total_kilometers_driven == 150
    assert stored.has_overage is True
    assert stored.status == RentalStatus.COMPLETED
    assert stored.completed_at is not None


def test_within_allowance_has_no_overage(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.package(model.id, included=100, rate=2)
    seed.price(model.id, "daily", 300)
    rental = active_rental(seed, vehicle)

    result = billing.finalize_checkout(rental.id, Decimal(1080))

    assert result.overage_charge == 0
    stored = repository.get_rental(rental.id)
    assert stored.has_overage is False
    assert stored.total_amount == 300


def test_package_price_is_not_used_for_billing(seed, billing, fleet):
    model, vehicle = fleet
    seed.package(model.id, included=100, rate=2, base_price=Decimal(50))
    seed.price(model.id, "daily", 300)
    seed.price(model.id, "weekly", 1500)
    rental = active_rental(seed, vehicle, rental_type="weekly")

    assert billing.finalize_checkout(rental.id, Decimal(1010)).unit_price == 1500


def test_vehicle_odometer_advances_and_vehicle_is_released(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.price(model.id, "daily", 300)
    rental = active_rental(seed, vehicle)

    billing.finalize_checkout(rental.id, Decimal(1234))

    refreshed = repository.get_vehicle(vehicle.id)
    assert refreshed.current_odometer == 1234
    assert refreshed.status == VehicleStatus.AVAILABLE


def test_ending_odometer_below_start_is_rejected(seed, repository, billing, fleet):
    model, vehicle = fleet
    rental = active_rental(seed, vehicle)

    with pytest.raises(ValidationError):
        billing.finalize_checkout(rental.id, Decimal(999))

    assert repository.get_rental(rental.id).ending_odometer is None
    assert repository.get_vehicle(vehicle.id).current_odometer == 1000


def test_missing_readings_are_rejected(seed, billing, fleet):
    model, vehicle = fleet
    rental = active_rental(seed, vehicle)
    no_start = active_rental(seed, vehicle, start_odometer=None)

    with pytest.raises(ValidationError):
        billing.finalize_checkout(rental.id, None)
    with pytest.raises(ValidationError):
        billing.finalize_checkout(no_start.id, Decimal(1100))


def test_checkout_before_pickup_is_rejected(seed, billing, fleet):
    model, vehicle = fleet
    rental = seed.rental(vehicle.id, at(1, 8), at(2, 8), status="confirmed", start_odometer=Decimal(1000))

    with pytest.raises(ValidationError):
        billing.finalize_checkout(rental.id, Decimal(1100))


def test_checkout_twice_is_rejected(seed, billing, fleet):
    model, vehicle = fleet
    rental = active_rental(seed, vehicle)
    billing.finalize_checkout(rental.id, Decimal(1100))

    with pytest.raises(ValidationError):
        billing.finalize_checkout(rental.id, Decimal(1200))


def test_unknown_rental_raises(billing):
    with pytest.raises(NotFoundError):
        billing.finalize_checkout(404, Decimal(10))


def test_missing_base_price_falls_back_to_stored_amount(seed, billing, fleet, caplog):
    model, vehicle = fleet
    seed.package(model.id, included=100, rate=2)
    rental = active_rental(seed, vehicle, total_amount=Decimal(250))

    with caplog.at_level("WARNING", logger="billing"):
        result = billing.finalize_checkout(rental.id, Decimal(1150))

    assert result.pricing_fallback is True
    assert result.unit_price == 250
    assert result.rental.total_amount == 350
    assert any("No active base price" in record.getMessage() for record in caplog.records)


def test_no_package_has_no_overage(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.price(model.id, "daily", 300)
    rental = active_rental(seed, vehicle)

    result = billing.finalize_checkout(rental.id, Decimal(1150))

    stored = repository.get_rental(rental.id)
    assert stored.package_id is None
    assert stored.included_distance == 0
    assert result.overage_charge == 0
    assert stored.total_amount == 300


def test_zero_allowance_is_never_metered():
    assert compute_overage(Decimal(150), Decimal(0), Decimal(2)) == Decimal("0.00")


def test_zero_allowance_package_bills_base_price_only(seed, repository, billing, fleet):
    model, vehicle = fleet
    package = seed.package(model.id, included=0, rate=2)
    seed.price(model.id, "daily", 300)
    rental = active_rental(seed, vehicle)

    result = billing.finalize_checkout(rental.id, Decimal(1150))

    assert result.total_distance == 150
    assert result.overage_charge == 0
    stored = repository.get_rental(rental.id)
    assert stored.package_id == package.id
    assert stored.has_overage is False
    assert stored.total_amount == 300


def test_overage_is_rounded_to_cents():
    assert compute_overage(Decimal("100.5"), Decimal(100), Decimal("0.333")) == Decimal("0.17")


def test_billing_conservation(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.package(model.id, included=40, rate=Decimal("1.75"))
    seed.price(model.id, "daily", Decimal("199.99"))
    for ending in (1000, 1039, 1040, 1041, 1333):
        rental = active_rental(seed, vehicle)
        billing.finalize_checkout(rental.id, Decimal(ending))
        stored = repository.get_rental(rental.id)
        assert stored.overage_charge >= 0
        assert stored.total_amount == stored.unit_price + stored.overage_charge


def test_recompute_uses_corrected_price(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.package(model.id, included=100, rate=2)
    rental = active_rental(seed, vehicle, total_amount=Decimal(250))
    billing.finalize_checkout(rental.id, Decimal(1150))

    with repository.transaction():
        repository.replace_base_price(model.id, "daily", Decimal(300))
    result = billing.recompute_overage(rental.id)

    assert result.pricing_fallback is False
    assert result.unit_price == 300
    assert result.overage_charge == 100
    assert result.rental.total_amount == 400
    assert result.rental.ending_odometer == 1150
    assert repository.get_vehicle(vehicle.id).current_odometer == 1150


def test_recompute_fallback_does_not_compound_overage(seed, billing, fleet):
    model, vehicle = fleet
    seed.package(model.id, included=100, rate=2)
    rental = active_rental(seed, vehicle, total_amount=Decimal(250))
    billing.finalize_checkout(rental.id, Decimal(1150))

    first = billing.recompute_overage(rental.id)
    second = billing.recompute_overage(rental.id)

    assert first.rental.total_amount == second.rental.total_amount == 350


def test_recompute_requires_finalized_rental(seed, billing, fleet):
    model, vehicle = fleet
    rental = active_rental(seed, vehicle)

    with pytest.raises(ValidationError):
        billing.recompute_overage(rental.id)


def test_recompute_does_not_attach_a_package(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.price(model.id, "daily", 300)
    rental = active_rental(seed, vehicle)
    billing.finalize_checkout(rental.id, Decimal(1150))

    seed.package(model.id, included=100, rate=2)
    result = billing.recompute_overage(rental.id)

    assert result.overage_charge == 0
    assert result.rental.total_amount == 300
    assert repository.get_rental(rental.id).package_id is None


def test_distance_matches_stored_odometer_precision(seed, repository, billing, fleet):
    model, vehicle = fleet
    seed.package(model.id, included=100, rate=2)
    seed.price(model.id, "daily", 300)
    rental = active_rental(seed, vehicle)

    result = billing.finalize_checkout(rental.id, Decimal("1150.04"))

    stored = repository.get_rental(rental.id)
    assert result.total_distance == Decimal("150.0")
    assert stored.total_kilometers_driven == result.total_distance
    assert stored.ending_odometer == Decimal("1150.0")
    assert result.overage_charge == Decimal("100.00")
