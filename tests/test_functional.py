"""
Functional tests for the booking flows
Booking, cancellation, modification, tickets and accounts against the in-memory store
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from backend.auth_service import AuthService
from backend.exceptions import Forbidden, NotFound, Unauthenticated, ValidationError
from database import BookingStatus, Identity


class TestAuthService:
    """Test authentication and user management"""

    @pytest.fixture
    def auth(self, store, settings):
        return AuthService(store=store, settings=settings)

    def test_create_user(self, auth):
        """Test user creation"""
        user = auth.create_user('user@test.com', 'password123', 'Test Person')
        assert user.id is not None
        assert user.email == 'user@test.com'
        assert user.full_name == 'Test Person'

    def test_duplicate_user(self, auth):
        """Test duplicate user creation fails"""
        auth.create_user('dup@test.com', 'password123')
        with pytest.raises(ValidationError):
            auth.create_user('DUP@test.com', 'password123')

    def test_short_password_rejected(self, auth):
        with pytest.raises(ValidationError):
            auth.create_user('short@test.com', 'short')

    def test_authenticate(self, auth):
        """Test user authentication"""
        created = auth.create_user('login@test.com', 'password123')
        user = auth.authenticate('login@test.com', 'password123')
        assert user is not None
        assert user.id == created.id

    def test_authenticate_wrong_password(self, auth):
        """Test authentication with wrong password"""
        auth.create_user('login@test.com', 'password123')
        assert auth.authenticate('login@test.com', 'wrongpassword') is None

    def test_password_hashing(self, auth):
        """Test password is properly hashed"""
        user = auth.create_user('hash@test.com', 'mypassword')
        assert user.password_hash != 'mypassword'
        assert AuthService.verify_password('mypassword', user.password_hash)

    def test_token_round_trip(self, auth):
        """A login token resolves to the caller's identity"""
        user = auth.create_user('token@test.com', 'password123', 'Token User')
        token = auth.login('token@test.com', 'password123')

        identity = auth.verify_token(f"Bearer {token}")
        assert identity.user_id == user.id
        assert identity.email == 'token@test.com'

    def test_login_wrong_password(self, auth):
        auth.create_user('token@test.com', 'password123')
        with pytest.raises(Unauthenticated):
            auth.login('token@test.com', 'nope-nope-nope')

    def test_unknown_and_missing_tokens(self, auth):
        with pytest.raises(Unauthenticated):
            auth.verify_token(None)
        with pytest.raises(Unauthenticated):
            auth.verify_token('Bearer ')
        with pytest.raises(Unauthenticated):
            auth.verify_token('not-a-real-token')

    def test_expired_token_is_rejected_and_removed(self, auth, store, test_user):
        store.create_session('stale', test_user.id, datetime.now(timezone.utc) - timedelta(minutes=1))
        with pytest.raises(Unauthenticated):
            auth.verify_token('stale')
        assert store.get_session('stale') is None

    def test_revoke_token(self, auth):
        auth.create_user('revoke@test.com', 'password123')
        token = auth.login('revoke@test.com', 'password123')
        auth.revoke_token(token)
        with pytest.raises(Unauthenticated):
            auth.verify_token(token)

    def test_admin_allow_list(self, auth):
        assert auth.is_admin('admin@example.com')
        assert auth.is_admin(' ADMIN@example.com ')
        assert not auth.is_admin('test@example.com')
        assert not auth.is_admin(None)


class TestBookingService:
    """Test booking creation"""

    def test_create_booking(self, booking_service, store, identity, test_flight, passenger_details, mailer):
        """Test booking creation"""
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)

        assert confirmation.booking_id is not None
        assert len(confirmation.booking_reference) == 8
        assert confirmation.booking_reference == confirmation.booking_reference.upper()
        assert confirmation.ticket_url == f"/tickets/{confirmation.booking_id}"

        booking = store.get_booking(confirmation.booking_id)
        assert booking.booking_status == BookingStatus.CONFIRMED
        assert booking.user_id == identity.user_id
        assert booking.total_price == Decimal('299.99')
        assert booking.ticket_url == confirmation.ticket_url

        assert mailer.recipients() == [identity.email]
        assert confirmation.notification.sent

    def test_booking_decrements_seats_by_one(self, booking_service, store, identity, test_flight,
                                             passenger_details):
        """Exactly one seat, one booking and one passenger per call"""
        booking_service.create_booking(test_flight.id, passenger_details, identity)

        assert store.get_flight(test_flight.id).available_seats == test_flight.available_seats - 1
        assert len(store.bookings) == 1
        assert len(store.passengers) == 1

    def test_passenger_record(self, booking_service, store, identity, test_flight, passenger_details):
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)

        passenger = store.passengers[confirmation.booking_id]
        assert passenger.full_name == 'John Doe'
        assert passenger.date_of_birth == date(1990, 1, 1)
        assert passenger.passport_number == 'AB123456'
        assert passenger.seat_number == confirmation.seat_number

    def test_seat_number_shape(self, booking_service, identity, make_flight, passenger_details):
        flight = make_flight(available_seats=50)
        for _ in range(20):
            seat = booking_service.create_booking(flight.id, passenger_details, identity).seat_number
            assert seat[-1] in 'ABCDEF'
            assert 1 <= int(seat[:-1]) <= 30

    def test_confirmation_email_content(self, booking_service, identity, test_flight, passenger_details,
                                        mailer):
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)

        message = mailer.sent[0]
        assert message.subject == f"Flight Booking Confirmation - {confirmation.booking_reference}"
        assert 'New York (JFK)' in message.text
        assert 'Los Angeles (LAX)' in message.text
        assert '$299.99' in message.text
        assert f"https://flights.example.com/tickets/{confirmation.booking_id}" in message.html

    def test_list_user_bookings(self, booking_service, identity, other_user, make_flight, passenger_details):
        first = booking_service.create_booking(make_flight().id, passenger_details, identity)
        second = booking_service.create_booking(make_flight().id, passenger_details, identity)

        bookings = booking_service.list_user_bookings(identity)
        assert [d.booking.id for d in bookings] == [second.booking_id, first.booking_id]

        other = booking_service.list_user_bookings(
            Identity(user_id=other_user.id, email=other_user.email)
        )
        assert other == []

    def test_get_ticket(self, booking_service, identity, test_flight, passenger_details):
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)

        details = booking_service.get_ticket(confirmation.booking_id, identity)
        assert details.booking.booking_reference == confirmation.booking_reference
        assert details.flight.flight_number == test_flight.flight_number
        assert details.passenger.full_name == 'John Doe'

    def test_get_ticket_of_someone_else(self, booking_service, identity, other_user, test_flight,
                                        passenger_details):
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)
        stranger = Identity(user_id=other_user.id, email=other_user.email)

        with pytest.raises(Forbidden):
            booking_service.get_ticket(confirmation.booking_id, stranger)
        with pytest.raises(NotFound):
            booking_service.get_ticket(999999, identity)


class TestCancellation:
    """Test booking cancellation"""

    def test_cancel_booking(self, booking_service, store, identity, test_flight, passenger_details, mailer):
        """Test booking cancellation"""
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)
        seats_after_booking = store.get_flight(test_flight.id).available_seats

        result = booking_service.cancel_booking(confirmation.booking_id, identity)

        assert result.success
        assert result.message == 'Booking cancelled.'
        assert store.get_booking(confirmation.booking_id).booking_status == BookingStatus.CANCELLED
        # Seats are not handed back on cancellation
        assert store.get_flight(test_flight.id).available_seats == seats_after_booking

        cancellation = mailer.sent[-1]
        assert cancellation.subject == f"Flight Booking Cancelled - {confirmation.booking_reference}"
        assert 'Dear John Doe' in cancellation.html

    def test_cancel_twice_rejected(self, booking_service, identity, test_flight, passenger_details, mailer):
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)
        booking_service.cancel_booking(confirmation.booking_id, identity)
        sent_before = len(mailer.sent)

        with pytest.raises(ValidationError):
            booking_service.cancel_booking(confirmation.booking_id, identity)
        assert len(mailer.sent) == sent_before


class TestModification:
    """Test booking modification"""

    def test_modify_passenger_fields(self, booking_service, store, identity, test_flight, passenger_details,
                                     mailer):
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)

        result = booking_service.modify_booking(
            confirmation.booking_id, identity,
            {'full_name': 'Jane Doe', 'nationality': 'CAN', 'passport_number': 'ZZ999999'}
        )

        assert result.success
        assert result.message == 'Booking modified.'
        passenger = store.passengers[confirmation.booking_id]
        assert passenger.full_name == 'Jane Doe'
        assert passenger.nationality == 'CAN'
        assert passenger.passport_number == 'ZZ999999'

        modification = mailer.sent[-1]
        assert modification.subject == f"Flight Booking Modified - {confirmation.booking_reference}"
        assert 'Dear Jane Doe' in modification.html

    def test_only_allow_listed_fields_change(self, booking_service, store, identity, test_flight,
                                             passenger_details):
        confirmation = booking_service.create_booking(test_flight.id, passenger_details, identity)

        booking_service.modify_booking(
            confirmation.booking_id, identity,
            {'full_name': 'Jane Doe', 'seat_number': '1A', 'gender': 'Female', 'date_of_birth': '2000-01-01'}
        )

        passenger = store.passengers[confirmation.booking_id]
        assert passenger.full_name == 'Jane Doe'
        assert passenger.seat_number == confirmation.seat_number
        assert passenger.gender == 'Male'
        assert passenger.date_of_birth == date(1990, 1, 1)

    def test_move_to_another_flight(self, booking_service, store, identity, make_flight, passenger_details):
        origin_flight = make_flight(available_seats=5)
        target_flight = make_flight(available_seats=5)
        confirmation = booking_service.create_booking(origin_flight.id, passenger_details, identity)

        booking_service.modify_booking(confirmation.booking_id, identity, {}, new_flight_id=target_flight.id)

        assert store.get_booking(confirmation.booking_id).flight_id == target_flight.id
        # Moving a booking leaves both flights' seat counts alone
        assert store.get_flight(origin_flight.id).available_seats == 4
        assert store.get_flight(target_flight.id).available_seats == 5

    def test_flight_id_inside_update_fields(self, booking_service, store, identity, make_flight,
                                            passenger_details):
        origin_flight = make_flight()
        target_flight = make_flight()
        confirmation = booking_service.create_booking(origin_flight.id, passenger_details, identity)

        booking_service.modify_booking(confirmation.booking_id, identity, {'flight_id': target_flight.id})

        assert store.get_booking(confirmation.booking_id).flight_id == target_flight.id


class TestAdminBookingListing:
    """Admin view over every user's bookings"""

    @pytest.fixture
    def bookings(self, booking_service, identity, other_user, make_flight, passenger_details):
        first = booking_service.create_booking(make_flight(price='100.00').id, passenger_details, identity)
        second = booking_service.create_booking(
            make_flight(price='250.50').id, passenger_details,
            Identity(user_id=other_user.id, email=other_user.email)
        )
        third = booking_service.create_booking(make_flight(price='49.50').id, passenger_details, identity)
        booking_service.cancel_booking(third.booking_id, identity)
        return first, second, third

    def test_lists_all_newest_first(self, booking_service, admin_identity, bookings):
        first, second, third = bookings

        listing = booking_service.list_bookings(admin_identity)
        assert [d.booking.id for d in listing.bookings] == [
            third.booking_id, second.booking_id, first.booking_id
        ]
        assert listing.bookings[1].owner_email == 'other@example.com'
        assert len(booking_service.list_bookings(admin_identity, status='all').bookings) == 3

    def test_status_filter_keeps_full_counts(self, booking_service, admin_identity, bookings):
        first, second, third = bookings

        confirmed = booking_service.list_bookings(admin_identity, status='confirmed')
        assert [d.booking.id for d in confirmed.bookings] == [second.booking_id, first.booking_id]

        cancelled = booking_service.list_bookings(admin_identity, status='CANCELLED')
        assert [d.booking.id for d in cancelled.bookings] == [third.booking_id]

        assert cancelled.total_bookings == 3
        assert cancelled.confirmed_bookings == 2
        assert cancelled.cancelled_bookings == 1
        assert cancelled.total_revenue == Decimal('400.00')
        assert cancelled.average_revenue == Decimal('400.00') / 3

    def test_empty_listing(self, booking_service, admin_identity):
        listing = booking_service.list_bookings(admin_identity)
        assert listing.bookings == []
        assert listing.total_bookings == 0
        assert listing.average_revenue == Decimal('0')

    def test_unknown_status(self, booking_service, admin_identity):
        with pytest.raises(ValidationError):
            booking_service.list_bookings(admin_identity, status='refunded')

    def test_non_admin_forbidden(self, booking_service, identity, bookings):
        with pytest.raises(Forbidden):
            booking_service.list_bookings(identity)

    def test_requires_identity(self, booking_service):
        with pytest.raises(Unauthenticated):
            booking_service.list_bookings(None)
