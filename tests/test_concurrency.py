"""
Concurrency tests for simultaneous booking scenarios
Tests that concurrent bookings never oversell a flight
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from decimal import Decimal

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.booking_service import BookingService
from backend.email_service import MockEmailSender
from backend.exceptions import NotFound, SoldOut
from backend.flight_service import FlightService
from database import BookingStatus, FlightStatus, Identity, ReservationStore
from database.database import DatabaseManager, set_db_manager


def run_concurrent_bookings(service, flight_id, identities, passenger_details):
    """Book once per identity, all at the same time"""
    successful_bookings = []
    failed_bookings = []

    def book_flight(identity):
        try:
            return ('success', service.create_booking(flight_id, passenger_details, identity))
        except SoldOut as e:
            return ('failed', str(e))

    # Use thread pool to simulate concurrent requests
    with ThreadPoolExecutor(max_workers=len(identities)) as executor:
        futures = [executor.submit(book_flight, identity) for identity in identities]

        for future in as_completed(futures):
            status, result = future.result()
            if status == 'success':
                successful_bookings.append(result)
            else:
                failed_bookings.append(result)

    return successful_bookings, failed_bookings


class TestConcurrentBooking:
    """Test concurrent booking operations against the in-memory store"""

    def create_identities(self, store, count=10):
        identities = []
        for i in range(count):
            user = store.create_user(f'user{i}@test.com', 'not_used', f'User{i} Test')
            identities.append(Identity(user_id=user.id, email=user.email, full_name=user.full_name))
        return identities

    def test_more_buyers_than_seats(self, booking_service, store, make_flight, passenger_details):
        """Twenty callers race for ten seats"""
        flight = make_flight(available_seats=10)
        identities = self.create_identities(store, count=20)

        successful, failed = run_concurrent_bookings(booking_service, flight.id, identities, passenger_details)

        assert len(successful) == 10
        assert len(failed) == 10
        assert store.get_flight(flight.id).available_seats == 0
        assert len(store.bookings) == 10

        references = [b.booking_reference for b in successful]
        assert len(references) == len(set(references))

    def test_last_seat_race(self, booking_service, store, make_flight, passenger_details):
        flight = make_flight(available_seats=1)
        identities = self.create_identities(store, count=8)

        successful, failed = run_concurrent_bookings(booking_service, flight.id, identities, passenger_details)

        assert len(successful) == 1
        assert len(failed) == 7
        assert store.get_flight(flight.id).available_seats == 0


# ----------------------------------------------------------------------
# PostgreSQL suite (pytest --postgres, TEST_DATABASE_URL)
# ----------------------------------------------------------------------

@pytest.fixture(scope='function')
def db_manager():
    """Create a test database manager with PostgreSQL test database."""
    # Use environment variable or default to local test database
    test_db_url = os.getenv('TEST_DATABASE_URL', 'postgresql://localhost/flight_reservations_test')
    db = DatabaseManager(database_url=test_db_url, echo=False)
    db.drop_tables()  # Clean slate for each test
    db.create_tables()
    set_db_manager(db)
    yield db
    set_db_manager(None)
    db.drop_tables()  # Cleanup after test
    db.close_all_connections()


@pytest.fixture
def pg_store(db_manager):
    return ReservationStore(db_manager)


@pytest.fixture
def pg_flight(pg_store):
    airline = pg_store.create_airline('AA', 'American Airlines')
    origin = pg_store.create_airport('JFK', 'New York', name='John F. Kennedy International')
    destination = pg_store.create_airport('LAX', 'Los Angeles', name='Los Angeles International')
    departure = datetime.now(timezone.utc) + timedelta(days=1)

    def _pg_flight(available_seats):
        return pg_store.create_flight(
            flight_number='TEST001',
            airline_id=airline.id,
            origin_airport_id=origin.id,
            destination_airport_id=destination.id,
            departure_time=departure,
            arrival_time=departure + timedelta(hours=2),
            duration='2h 0m',
            price=Decimal('100.00'),
            available_seats=available_seats,
            cabin_class='Economy',
        )

    return _pg_flight


def pg_identities(store, count):
    identities = []
    for i in range(count):
        user = store.create_user(f'pguser{i}@test.com', 'not_used', f'PG User {i}')
        identities.append(Identity(user_id=user.id, email=user.email, full_name=user.full_name))
    return identities


@pytest.mark.postgres
class TestPostgresBooking:
    """The booking procedure under real concurrency"""

    @pytest.fixture
    def service(self, pg_store, settings):
        return BookingService(store=pg_store, email_sender=MockEmailSender(), settings=settings)

    def test_concurrent_bookings_never_oversell(self, service, pg_store, pg_flight, passenger_details):
        flight = pg_flight(available_seats=10)
        identities = pg_identities(pg_store, 20)

        successful, failed = run_concurrent_bookings(service, flight.id, identities, passenger_details)

        assert len(successful) == 10
        assert len(failed) == 10
        assert pg_store.get_flight(flight.id).available_seats == 0

        with pg_store.db.get_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS n FROM bookings WHERE flight_id = %s", (flight.id,))
            assert cursor.fetchone()['n'] == 10
            cursor.execute("SELECT COUNT(*) AS n FROM passengers")
            assert cursor.fetchone()['n'] == 10

    def test_sold_out_leaves_no_rows(self, service, pg_store, pg_flight, passenger_details):
        flight = pg_flight(available_seats=0)
        identity = pg_identities(pg_store, 1)[0]

        with pytest.raises(SoldOut):
            service.create_booking(flight.id, passenger_details, identity)

        with pg_store.db.get_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS n FROM bookings")
            assert cursor.fetchone()['n'] == 0

    def test_procedure_reports_sold_out_and_missing_flight(self, pg_store, pg_flight):
        flight = pg_flight(available_seats=0)
        user = pg_store.create_user('direct@test.com', 'not_used')
        passenger = {'full_name': 'Direct Caller'}

        with pytest.raises(SoldOut):
            pg_store.book_flight(user.id, flight.id, passenger, '1A', 'ABCDEFGH', Decimal('100.00'))
        with pytest.raises(NotFound):
            pg_store.book_flight(user.id, flight.id + 1000, passenger, '1A', 'ABCDEFGH', Decimal('100.00'))

    def test_booking_lifecycle(self, service, pg_store, pg_flight, passenger_details):
        flight = pg_flight(available_seats=3)
        identity = pg_identities(pg_store, 1)[0]

        confirmation = service.create_booking(flight.id, passenger_details, identity)
        details = pg_store.get_booking_details(confirmation.booking_id)
        assert details.booking.ticket_url == f"/tickets/{confirmation.booking_id}"
        assert details.passenger.seat_number == confirmation.seat_number
        assert details.flight.origin.code == 'JFK'
        assert details.owner_email == identity.email

        service.modify_booking(confirmation.booking_id, identity, {'passport_number': 'NEW12345'})
        assert pg_store.get_booking_details(confirmation.booking_id).passenger.passport_number == 'NEW12345'

        service.cancel_booking(confirmation.booking_id, identity)
        assert pg_store.get_booking(confirmation.booking_id).booking_status == BookingStatus.CANCELLED
        assert pg_store.get_flight(flight.id).available_seats == 2

    def test_flight_update_notifies_confirmed_passengers(self, service, pg_store, pg_flight,
                                                         passenger_details, settings):
        flight = pg_flight(available_seats=5)
        identities = pg_identities(pg_store, 2)
        for identity in identities:
            service.create_booking(flight.id, passenger_details, identity)

        admin = Identity(user_id=identities[0].user_id, email='admin@example.com')
        mailer = MockEmailSender()
        flights = FlightService(store=pg_store, email_sender=mailer, settings=settings)

        current = pg_store.get_flight(flight.id)
        result = flights.update_flight(flight.id, {
            'departure_time': current.departure_time + timedelta(hours=1),
            'arrival_time': current.arrival_time + timedelta(hours=1),
            'price': current.price,
            'available_seats': current.available_seats,
            'status': 'DELAYED',
        }, admin)

        assert result.total_bookings == 2
        assert result.notifications_sent == 2
        assert sorted(mailer.recipients()) == sorted(identity.email for identity in identities)
        assert pg_store.get_flight(flight.id).status == FlightStatus.DELAYED

    def test_search_and_admin_listing_queries(self, service, pg_store, pg_flight, passenger_details):
        flight = pg_flight(available_seats=5)
        identities = pg_identities(pg_store, 2)
        first = service.create_booking(flight.id, passenger_details, identities[0])
        second = service.create_booking(flight.id, passenger_details, identities[1])
        service.cancel_booking(first.booking_id, identities[0])

        day_start = flight.departure_time.replace(hour=0, minute=0, second=0, microsecond=0)
        found = pg_store.search_flights(
            flight.origin_airport_id, flight.destination_airport_id,
            window_start=day_start, window_end=day_start + timedelta(days=1),
            not_before=datetime.now(timezone.utc), cabin_class='Economy',
        )
        assert [f.id for f in found] == [flight.id]
        assert found[0].destination.code == 'LAX'
        assert pg_store.search_flights(
            flight.origin_airport_id, flight.destination_airport_id,
            window_start=day_start, window_end=day_start + timedelta(days=1),
            not_before=datetime.now(timezone.utc), cabin_class='First',
        ) == []

        assert [d.booking.id for d in pg_store.list_bookings()] == [second.booking_id, first.booking_id]
        cancelled = pg_store.list_bookings(BookingStatus.CANCELLED)
        assert [d.booking.id for d in cancelled] == [first.booking_id]
        assert cancelled[0].passenger.full_name == 'John Doe'

        stats = pg_store.booking_stats()
        assert stats['total_bookings'] == 2
        assert stats['confirmed_bookings'] == 1
        assert stats['cancelled_bookings'] == 1
        assert stats['total_revenue'] == Decimal('200.00')
