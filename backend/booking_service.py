"""
Booking service: seat booking, cancellation and modification
Seat inventory is guarded by the store's book_flight transaction; emails are best-effort
"""
import logging
import random
import time
import uuid
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from database import (
    BookingConfirmation, BookingDetails, BookingListing, BookingStatus, Identity,
    LifecycleResult, NotificationOutcome, ReservationStore
)
from .auth_service import admin_allow_list
from .config import Settings, get_settings
from .email_service import SmtpEmailSender
from .email_templates import (
    BookingEmailData, booking_cancellation_email, booking_confirmation_email,
    booking_modification_email
)
from .exceptions import (
    ConcurrentUpdate, Forbidden, NotFound, ReferenceCollision, SoldOut,
    TransactionFailure, Unauthenticated, ValidationError
)
from .notifications import NotificationDispatcher, NotificationJob

logger = logging.getLogger(__name__)

SEAT_ROWS = 30
SEAT_LETTERS = 'ABCDEF'


def require_identity(identity: Optional[Identity]) -> Identity:
    if identity is None or identity.user_id is None:
        raise Unauthenticated()
    return identity


class BookingService:
    """Service for booking operations with transaction safety"""

    PASSENGER_REQUIRED_FIELDS = ('full_name', 'date_of_birth', 'gender', 'nationality', 'passport_number')
    MODIFIABLE_FIELDS = ('full_name', 'nationality', 'passport_number')

    MAX_RETRIES = 5
    RETRY_DELAY = 0.01  # seconds, doubled per attempt

    def __init__(self, store: Optional[ReservationStore] = None, email_sender=None,
                 settings: Optional[Settings] = None,
                 is_admin: Optional[Callable[[str], bool]] = None):
        """
        Initialize booking service

        Args:
            store: Reservation store (defaults to the PostgreSQL store)
            email_sender: Anything with ``send(to, subject, html, text)`` (defaults to SMTP)
            settings: Runtime settings (defaults to the environment)
            is_admin: Authorization predicate for the admin listing
                      (defaults to the ADMIN_EMAILS allow-list)
        """
        self.settings = settings or get_settings()
        self.store = store or ReservationStore()
        self.email_sender = email_sender or SmtpEmailSender(self.settings)
        self.is_admin = is_admin or admin_allow_list(self.settings.admin_emails)
        self.dispatcher = NotificationDispatcher(self.email_sender, self.settings.notification_workers)

    @staticmethod
    def _generate_booking_reference() -> str:
        """8 uppercase characters cut from a random UUID"""
        return str(uuid.uuid4())[:8].upper()

    @staticmethod
    def _generate_seat_number() -> str:
        """Cosmetic seat such as ``12C``; not checked against other passengers"""
        return f"{random.randint(1, SEAT_ROWS)}{random.choice(SEAT_LETTERS)}"

    @staticmethod
    def ticket_url_for(booking_id: int) -> str:
        return f"/tickets/{booking_id}"

    @classmethod
    def _validate_passenger(cls, details: Optional[Dict]) -> Dict:
        details = details or {}
        missing = [key for key in cls.PASSENGER_REQUIRED_FIELDS
                   if details.get(key) is None or not str(details.get(key)).strip()]
        if missing:
            raise ValidationError(f"Missing passenger fields: {', '.join(missing)}")

        passenger = {key: details[key] for key in cls.PASSENGER_REQUIRED_FIELDS}
        for key in ('full_name', 'gender', 'nationality', 'passport_number'):
            passenger[key] = str(passenger[key]).strip()

        date_of_birth = passenger['date_of_birth']
        if isinstance(date_of_birth, datetime):
            date_of_birth = date_of_birth.date()
        elif not isinstance(date_of_birth, date):
            try:
                date_of_birth = date.fromisoformat(str(date_of_birth).strip())
            except ValueError:
                raise ValidationError("date_of_birth must be an ISO date (YYYY-MM-DD)")
        if date_of_birth > date.today():
            raise ValidationError("date_of_birth cannot be in the future")
        passenger['date_of_birth'] = date_of_birth
        return passenger

    def _owned_booking(self, booking_id: int, identity: Identity):
        booking = self.store.get_booking(booking_id)
        if not booking:
            raise NotFound(f"Booking with ID {booking_id} not found")
        if booking.user_id != identity.user_id:
            raise Forbidden()
        return booking

    def _email_data(self, details: BookingDetails, to: str) -> BookingEmailData:
        flight = details.flight
        passenger = details.passenger
        return BookingEmailData(
            to=to,
            booking_reference=details.booking.booking_reference,
            ticket_url=details.booking.ticket_url,
            passenger_name=passenger.full_name if passenger and passenger.full_name else 'Passenger',
            flight_number=flight.flight_number,
            origin=flight.origin_label,
            destination=flight.destination_label,
            departure_time=flight.departure_time,
            arrival_time=flight.arrival_time,
            seat_number=passenger.seat_number if passenger and passenger.seat_number else '-',
            total_price=flight.price,
        )

    def _notify(self, data: BookingEmailData, rendered) -> Optional[NotificationOutcome]:
        if not data.to:
            logger.warning("No email address for booking %s; skipping notification", data.booking_reference)
            return None
        subject, html, text = rendered
        return self.dispatcher.send_one(NotificationJob(
            to=data.to,
            passenger=data.passenger_name,
            booking_ref=data.booking_reference,
            subject=subject,
            html=html,
            text=text,
        ))

    def _book_with_retries(self, identity: Identity, flight, passenger: Dict, seat_number: str):
        """Run the booking transaction, retrying reference collisions and rollbacks"""
        for attempt in range(self.MAX_RETRIES):
            booking_reference = self._generate_booking_reference()
            try:
                booking_id = self.store.book_flight(
                    user_id=identity.user_id,
                    flight_id=flight.id,
                    passenger=passenger,
                    seat_number=seat_number,
                    booking_reference=booking_reference,
                    total_price=flight.price,
                )
                return booking_id, booking_reference
            except ReferenceCollision:
                logger.warning("Booking reference %s collided; generating another", booking_reference)
            except ConcurrentUpdate:
                if attempt < self.MAX_RETRIES - 1:
                    time.sleep(self.RETRY_DELAY * (2 ** attempt))  # Exponential backoff
                    continue
                raise TransactionFailure("Unable to complete booking due to high concurrency. Please try again.")

        raise TransactionFailure("Could not allocate a unique booking reference")

    def create_booking(self, flight_id: int, passenger_details: Dict,
                       identity: Optional[Identity]) -> BookingConfirmation:
        """
        Book one seat on a flight for the caller

        Args:
            flight_id: Flight ID
            passenger_details: full_name, date_of_birth, gender, nationality, passport_number
            identity: Verified caller

        Returns:
            BookingConfirmation with reference, ticket URL and seat

        Raises:
            Unauthenticated, ValidationError, NotFound, SoldOut, TransactionFailure
        """
        identity = require_identity(identity)
        passenger = self._validate_passenger(passenger_details)

        flight = self.store.get_flight(flight_id)
        if not flight:
            raise NotFound(f"Flight with ID {flight_id} not found")
        if flight.available_seats < 1:
            raise SoldOut(f"No seats available on flight {flight.flight_number}")

        seat_number = self._generate_seat_number()
        booking_id, booking_reference = self._book_with_retries(identity, flight, passenger, seat_number)
        logger.info("Booking %s created on flight %s for user %s",
                    booking_reference, flight.flight_number, identity.user_id)

        ticket_url = self.ticket_url_for(booking_id)
        try:
            self.store.set_ticket_url(booking_id, ticket_url)
        except TransactionFailure as e:
            logger.error("Booking %s created but ticket URL was not stored: %s", booking_reference, e)

        data = BookingEmailData(
            to=identity.email,
            booking_reference=booking_reference,
            ticket_url=ticket_url,
            passenger_name=passenger['full_name'],
            flight_number=flight.flight_number,
            origin=flight.origin_label,
            destination=flight.destination_label,
            departure_time=flight.departure_time,
            arrival_time=flight.arrival_time,
            seat_number=seat_number,
            total_price=flight.price,
        )
        notification = self._notify(data, booking_confirmation_email(data, self.settings.app_url))

        return BookingConfirmation(
            booking_id=booking_id,
            booking_reference=booking_reference,
            ticket_url=ticket_url,
            seat_number=seat_number,
            notification=notification,
        )

    def cancel_booking(self, booking_id: int, identity: Optional[Identity]) -> LifecycleResult:
        """
        Cancel the caller's booking

        The seat is not returned to the flight's inventory.
        """
        identity = require_identity(identity)
        booking = self._owned_booking(booking_id, identity)
        if booking.booking_status == BookingStatus.CANCELLED:
            raise ValidationError(f"Booking {booking.booking_reference} is already cancelled")

        # Email content reflects the booking as it was before cancelling
        details = self.store.get_booking_details(booking_id)
        if not details or not details.flight:
            raise TransactionFailure("Failed to fetch booking or flight details for email.")

        self.store.set_booking_status(booking_id, BookingStatus.CANCELLED)
        logger.info("Booking %s cancelled; flight %s seat count left unchanged",
                    booking.booking_reference, booking.flight_id)

        data = self._email_data(details, details.owner_email)
        notification = self._notify(data, booking_cancellation_email(data))
        return LifecycleResult(success=True, message='Booking cancelled.', notification=notification)

    def modify_booking(self, booking_id: int, identity: Optional[Identity], update_fields: Optional[Dict],
                       new_flight_id: Optional[int] = None) -> LifecycleResult:
        """
        Update passenger details and optionally move the booking to another flight

        Only full_name, nationality and passport_number are applied; other keys
        are ignored. Seat counts are not adjusted on either flight.
        """
        identity = require_identity(identity)
        booking = self._owned_booking(booking_id, identity)
        if booking.booking_status == BookingStatus.CANCELLED:
            raise ValidationError(f"Booking {booking.booking_reference} is cancelled and cannot be modified")

        update_fields = update_fields or {}
        if new_flight_id is None:
            new_flight_id = update_fields.get('flight_id') or None
        if not update_fields and new_flight_id is None:
            raise ValidationError("No update data provided")

        passenger_fields = {}
        for key in self.MODIFIABLE_FIELDS:
            value = update_fields.get(key)
            if isinstance(value, str) and value.strip():
                passenger_fields[key] = value.strip()

        # Validate before touching anything
        if new_flight_id is not None and not self.store.flight_exists(new_flight_id):
            raise ValidationError("Invalid new flight_id provided.")

        flight_changed = new_flight_id is not None and new_flight_id != booking.flight_id
        if passenger_fields or flight_changed:
            self.store.apply_booking_modification(
                booking_id, passenger_fields, new_flight_id if flight_changed else None
            )
        if flight_changed:
            logger.info("Booking %s moved from flight %s to %s; seat counts left unchanged",
                        booking.booking_reference, booking.flight_id, new_flight_id)

        details = self.store.get_booking_details(booking_id)
        if not details or not details.flight or not details.passenger or not details.owner_email:
            logger.error("Failed to fetch booking details for email: booking %s", booking_id)
            raise TransactionFailure("Failed to fetch booking details for email.")

        data = self._email_data(details, details.owner_email)
        notification = self._notify(data, booking_modification_email(data))
        return LifecycleResult(success=True, message='Booking modified.', notification=notification)

    def get_ticket(self, booking_id: int, identity: Optional[Identity]) -> BookingDetails:
        """Full booking details for the owner's ticket page"""
        identity = require_identity(identity)
        details = self.store.get_booking_details(booking_id)
        if not details:
            raise NotFound(f"Booking with ID {booking_id} not found")
        if details.booking.user_id != identity.user_id:
            raise Forbidden()
        return details

    def list_user_bookings(self, identity: Optional[Identity]) -> List[BookingDetails]:
        """The caller's bookings, newest first"""
        identity = require_identity(identity)
        return self.store.list_user_bookings(identity.user_id)

    def list_bookings(self, identity: Optional[Identity], status: Optional[str] = None) -> BookingListing:
        """
        Admin listing of every booking, newest first

        Args:
            identity: Verified admin caller
            status: Booking status to filter on; ``None`` or ``'all'`` lists everything

        Returns:
            BookingListing whose counts and revenue cover all bookings regardless of the filter
        """
        identity = require_identity(identity)
        if not self.is_admin(identity.email):
            raise Forbidden("Not authorized as admin")

        status_filter = None
        if status and str(status).lower() != 'all':
            try:
                status_filter = BookingStatus(str(status).strip().upper())
            except ValueError:
                raise ValidationError(f"Invalid booking status: {status}")

        stats = self.store.booking_stats()
        return BookingListing(
            bookings=self.store.list_bookings(status_filter),
            total_bookings=stats['total_bookings'],
            confirmed_bookings=stats['confirmed_bookings'],
            cancelled_bookings=stats['cancelled_bookings'],
            total_revenue=stats['total_revenue'],
        )
