"""Pytest configuration and fixtures."""
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.booking_service import BookingService
from backend.config import Settings
from backend.email_service import MockEmailSender
from backend.flight_service import FlightService
from database import Identity
from tests.fakes import InMemoryStore

ADMIN_EMAIL = 'admin@example.com'


def pytest_addoption(parser):
    """Register custom CLI options for the test suite."""
    parser.addoption(
        "--postgres",
        action="store_true",
        default=False,
        help="Run the PostgreSQL-backed test suite (uses TEST_DATABASE_URL)",
    )


def pytest_configure(config):
    """Declare custom markers to avoid pytest warnings."""
    config.addinivalue_line(
        "markers",
        "postgres: marks tests that need a live PostgreSQL and only run when --postgres is supplied",
    )


def pytest_collection_modifyitems(config, items):
    """Skip PostgreSQL tests unless the dedicated flag is present."""
    if config.getoption("--postgres"):
        return

    skip_marker = pytest.mark.skip(
        reason="PostgreSQL tests only run when --postgres flag is provided",
    )
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_marker)


def identity_for(user) -> Identity:
    return Identity(user_id=user.id, email=user.email, full_name=user.full_name)


@pytest.fixture
def settings():
    """Settings independent of the developer's environment"""
    return Settings(
        database_url='postgresql://localhost/flight_reservations_test',
        app_url='https://flights.example.com',
        admin_emails=frozenset({ADMIN_EMAIL}),
        notification_workers=4,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def mailer():
    return MockEmailSender()


@pytest.fixture
def booking_service(store, mailer, settings):
    return BookingService(store=store, email_sender=mailer, settings=settings)


@pytest.fixture
def flight_service(store, mailer, settings):
    return FlightService(store=store, email_sender=mailer, settings=settings)


@pytest.fixture
def airports(store):
    """Origin and destination airports"""
    return (
        store.create_airport('JFK', 'New York', name='John F. Kennedy International', country='United States'),
        store.create_airport('LAX', 'Los Angeles', name='Los Angeles International', country='United States'),
    )


@pytest.fixture
def airline(store):
    return store.create_airline('AA', 'American Airlines')


@pytest.fixture
def test_user(store):
    """Create a test user"""
    return store.create_user('test@example.com', 'not_used', 'Test User')


@pytest.fixture
def other_user(store):
    return store.create_user('other@example.com', 'not_used', 'Other User')


@pytest.fixture
def test_admin(store):
    """Create a test admin user"""
    return store.create_user(ADMIN_EMAIL, 'not_used', 'Admin User')


@pytest.fixture
def identity(test_user):
    return identity_for(test_user)


@pytest.fixture
def admin_identity(test_admin):
    return identity_for(test_admin)


@pytest.fixture
def make_flight(store, airline, airports):
    """Factory for flights inserted straight into the store"""
    counter = {'n': 0}

    def _make_flight(available_seats=10, price='299.99', departure=None, arrival=None,
                     status=None, flight_number=None, cabin_class='Economy'):
        counter['n'] += 1
        departure = departure or datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=7)
        arrival = arrival or departure + timedelta(hours=3)
        return store.add_flight(
            flight_number=flight_number or f"AA{1000 + counter['n']}",
            airline_id=airline.id,
            origin_airport_id=airports[0].id,
            destination_airport_id=airports[1].id,
            departure_time=departure,
            arrival_time=arrival,
            duration='3h 0m',
            price=Decimal(price),
            available_seats=available_seats,
            status=status,
            cabin_class=cabin_class,
        )

    return _make_flight


@pytest.fixture
def test_flight(make_flight):
    """Create a test flight"""
    return make_flight()


@pytest.fixture
def passenger_details():
    return {
        'full_name': 'John Doe',
        'date_of_birth': '1990-01-01',
        'gender': 'Male',
        'nationality': 'USA',
        'passport_number': 'AB123456',
    }
