from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from clock import FixedClock
from database import Base
from repository import SqlAlchemyRentalRepository


def at(day, hour, minute=0, month=6, year=2024):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class Seed:
    """Inserts rows straight through the ORM, bypassing the services."""

    def __init__(self, db):
        self.db = db

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        return row

    def model(self, name="Yamaha Grizzly"):
        return self._save(models.VehicleModel(name=name))

    def vehicle(self, model_id=None, name="Quad 1", status="available", odometer=0, plate=None):
        return self._save(models.Vehicle(
            model_id=model_id,
            name=name,
            plate_number=plate,
            status=status,
            current_odometer=Decimal(odometer)
        ))

    def package(self, model_id, included, rate, name=None, active=True, base_price=None):
        return self._save(models.RentalPackage(
            model_id=model_id,
            name=name or f"{included} km",
            included_distance=Decimal(included),
            extra_distance_rate=Decimal(rate),
            base_price=base_price,
            is_active=active
        ))

    def price(self, model_id, rental_type, unit_price, active=True):
        return self._save(models.BasePrice(
            model_id=model_id,
            rental_type=rental_type,
            unit_price=Decimal(unit_price),
            is_active=active
        ))

    def rental(self, vehicle_id, start_at, end_at, status="confirmed", rental_type="daily",
               customer_name="Amina", **fields):
        return self._save(models.Rental(
            vehicle_id=vehicle_id,
            customer_name=customer_name,
            start_at=start_at,
            end_at=end_at,
            status=status,
            rental_type=rental_type,
            **fields
        ))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def seed(db):
    return Seed(db)


@pytest.fixture
def repository(db):
    return SqlAlchemyRentalRepository(db)


@pytest.fixture
def clock():
    return FixedClock(at(1, 6))


@pytest.fixture
def business_tz():
    return timezone.utc
