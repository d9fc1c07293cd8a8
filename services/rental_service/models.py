from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Numeric, ForeignKey,
    CheckConstraint, Index, DDL, event, text
)
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
from database import Base


def utcnow():
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes stored as UTC.

    SQLite drops the offset, so values are normalised to UTC on the way in
    and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


Money = Numeric(12, 2, asdecimal=True)
Distance = Numeric(12, 1, asdecimal=True)

NON_TERMINAL_SQL = "status NOT IN ('completed', 'cancelled', 'void')"


class VehicleModel(Base):
    __tablename__ = "vehicle_models"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    model_id = Column(Integer, ForeignKey("vehicle_models.id"), nullable=True)
    name = Column(String(120), nullable=False)
    plate_number = Column(String(20), unique=True)
    status = Column(String(20), nullable=False, default="available")
    current_odometer = Column(Distance, nullable=False, default=0)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'rented', 'maintenance', 'out_of_service')",
            name="vehicle_status_check"
        ),
    )


class RentalPackage(Base):
    __tablename__ = "rental_packages"

    id = Column(Integer, primary_key=True, index=True)
    model_id = Column(Integer, ForeignKey("vehicle_models.id"), nullable=False)
    name = Column(String(120), nullable=False)
    included_distance = Column(Distance, nullable=False, default=0)
    extra_distance_rate = Column(Money, nullable=False, default=0)
    # Shown on quotes only; checkout bills from base_prices
    base_price = Column(Money)
    is_active = Column(Boolean, nullable=False, default=True)


class BasePrice(Base):
    __tablename__ = "base_prices"

    id = Column(Integer, primary_key=True, index=True)
    model_id = Column(Integer, ForeignKey("vehicle_models.id"), nullable=False)
    rental_type = Column(String(20), nullable=False)
    unit_price = Column(Money, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "rental_type IN ('hourly', 'daily', 'weekly', 'monthly')",
            name="base_price_rental_type_check"
        ),
        Index(
            "uq_base_prices_active_model_type",
            "model_id", "rental_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class Rental(Base):
    __tablename__ = "rentals"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    customer_id = Column(Integer)
    customer_name = Column(String(120), nullable=False)
    organization_id = Column(String(64))
    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    rental_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    package_id = Column(Integer, ForeignKey("rental_packages.id"))
    included_distance = Column(Distance, nullable=False, default=0)
    extra_distance_rate = Column(Money, nullable=False, default=0)
    start_odometer = Column(Distance)
    ending_odometer = Column(Distance)
    total_kilometers_driven = Column(Distance)
    has_overage = Column(Boolean, nullable=False, default=False)
    unit_price = Column(Money)
    overage_charge = Column(Money, nullable=False, default=0)
    total_amount = Column(Money)
    picked_up_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'active', 'completed', 'cancelled', 'void')",
            name="rental_status_check"
        ),
        CheckConstraint(
            "rental_type IN ('hourly', 'daily', 'weekly', 'monthly')",
            name="rental_type_check"
        ),
        CheckConstraint("end_at > start_at", name="rental_window_check"),
        CheckConstraint(
            "ending_odometer IS NULL OR start_odometer IS NULL OR ending_odometer >= start_odometer",
            name="rental_odometer_check"
        ),
        CheckConstraint("overage_charge >= 0", name="rental_overage_check"),
        Index("ix_rentals_vehicle_status", "vehicle_id", "status"),
    )


# PostgreSQL rejects the losing writer of two concurrent overlapping bookings
NO_OVERLAP_CONSTRAINT = "rentals_no_overlap_per_vehicle"

event.listen(
    Rental.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Rental.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE rentals ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (vehicle_id WITH =, "
        "tstzrange(start_at, end_at, '[)') WITH &&) "
        f"WHERE ({NON_TERMINAL_SQL})"
    ).execute_if(dialect="postgresql"),
)
