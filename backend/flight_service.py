"""
Flight management service
Customer search, admin flight creation and updates, with change notifications to confirmed passengers
"""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Dict, List, Optional

from database import (
    BookingDetails, Flight, FlightStatus, FlightUpdateResult, Identity,
    ReservationStore, SeatMap
)
from .auth_service import admin_allow_list
from .booking_service import SEAT_LETTERS, require_identity
from .config import Settings, get_settings
from .email_service import SmtpEmailSender
from .email_templates import FlightChangeNotice, flight_change_email
from .exceptions import Forbidden, NotFound, ValidationError
from .flight_changes import (
    FlightSnapshot, compute_duration, flight_change_is_significant, is_missing,
    parse_date, parse_flight_update, parse_price, parse_seats, parse_status, parse_timestamp,
    summarize_flight_changes
)
from .notifications import NotificationDispatcher, NotificationJob, count_sent

logger = logging.getLogger(__name__)

CREATE_REQUIRED_FIELDS = ('flight_number', 'airline_id', 'origin_airport_id', 'destination_airport_id',
                          'departure_time', 'arrival_time', 'price', 'available_seats', 'cabin_class')


def generate_seat_map(total_seats: int) -> List[str]:
    """Row-major seat labels, six abreast: 1A..1F, 2A.."""
    seats = []
    row = 1
    while len(seats) < total_seats:
        for letter in SEAT_LETTERS:
            if len(seats) >= total_seats:
                break
            seats.append(f"{row}{letter}")
        row += 1
    return seats


class FlightService:
    """Service for flight management operations"""

    def __init__(self, store: Optional[ReservationStore] = None, email_sender=None,
                 is_admin: Optional[Callable[[str], bool]] = None,
                 settings: Optional[Settings] = None):
        """
        Initialize flight service

        Args:
            store: Reservation store (defaults to the PostgreSQL store)
            email_sender: Anything with ``send(to, subject, html, text)`` (defaults to SMTP)
            is_admin: Authorization predicate over the caller's email
                      (defaults to the ADMIN_EMAILS allow-list)
            settings: Runtime settings (defaults to the environment)
        """
        self.settings = settings or get_settings()
        self.store = store or ReservationStore()
        self.email_sender = email_sender or SmtpEmailSender(self.settings)
        self.is_admin = is_admin or admin_allow_list(self.settings.admin_emails)
        self.dispatcher = NotificationDispatcher(self.email_sender, self.settings.notification_workers)

    def _require_admin(self, identity: Optional[Identity]) -> Identity:
        identity = require_identity(identity)
        if not self.is_admin(identity.email):
            raise Forbidden("Not authorized as admin")
        return identity

    def get_flight(self, flight_id: int) -> Flight:
        flight = self.store.get_flight(flight_id)
        if not flight:
            raise NotFound(f"Flight with ID {flight_id} not found")
        return flight

    def search_flights(self, origin_airport_id: int, destination_airport_id: int,
                       departure_date, cabin_class: Optional[str] = None) -> List[Flight]:
        """
        Customer search: flights on a route that leave on the given UTC day

        Departures already in the past are left out, and the
        results are ordered by departure time.
        """
        if origin_airport_id is None or destination_airport_id is None:
            raise ValidationError("Origin and destination airports are required")
        day = parse_date(departure_date, 'departure_date')
        window_start = datetime.combine(day, time.min, tzinfo=timezone.utc)

        return self.store.search_flights(
            origin_airport_id,
            destination_airport_id,
            window_start=window_start,
            window_end=window_start + timedelta(days=1),
            not_before=datetime.now(timezone.utc),
            cabin_class=cabin_class.strip() if cabin_class and cabin_class.strip() else None,
        )

    def list_flights(self, identity: Optional[Identity], status: Optional[str] = None) -> List[Flight]:
        """Admin listing with confirmed booking counts; ``status='all'`` means no filter"""
        self._require_admin(identity)
        status_filter = parse_status(status) if status and status.lower() != 'all' else None
        return self.store.list_flights(status_filter)

    def create_flight(self, attributes: Dict, identity: Optional[Identity]) -> Flight:
        """
        Create a new flight

        Args:
            attributes: flight_number, airline_id, origin_airport_id, destination_airport_id,
                        departure_time, arrival_time, price, available_seats, cabin_class
                        (status and aircraft_type optional)
            identity: Verified admin caller

        Returns:
            Created flight object
        """
        self._require_admin(identity)

        missing = [key for key in CREATE_REQUIRED_FIELDS if is_missing(attributes, key)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        if attributes['origin_airport_id'] == attributes['destination_airport_id']:
            raise ValidationError("Origin and destination airports must be different")

        departure_time = parse_timestamp(attributes['departure_time'], 'departure_time')
        arrival_time = parse_timestamp(attributes['arrival_time'], 'arrival_time')
        if departure_time >= arrival_time:
            raise ValidationError("Departure time must be before arrival time")
        if departure_time <= datetime.now(timezone.utc):
            raise ValidationError("Departure time must be in the future")

        price = parse_price(attributes['price'])
        available_seats = parse_seats(attributes['available_seats'])
        status = parse_status(attributes.get('status') or FlightStatus.SCHEDULED)

        if not self.store.get_airline(attributes['airline_id']):
            raise ValidationError("Invalid airline ID")
        if (not self.store.get_airport(attributes['origin_airport_id'])
                or not self.store.get_airport(attributes['destination_airport_id'])):
            raise ValidationError("Invalid airport ID(s)")

        flight = self.store.create_flight(
            flight_number=str(attributes['flight_number']).strip().upper(),
            airline_id=attributes['airline_id'],
            origin_airport_id=attributes['origin_airport_id'],
            destination_airport_id=attributes['destination_airport_id'],
            departure_time=departure_time,
            arrival_time=arrival_time,
            duration=compute_duration(departure_time, arrival_time),
            price=price,
            available_seats=available_seats,
            cabin_class=str(attributes['cabin_class']).strip(),
            status=status,
            aircraft_type=attributes.get('aircraft_type'),
        )
        logger.info("Flight %s created (id=%s)", flight.flight_number, flight.id)
        return flight

    def get_seat_map(self, flight_id: int) -> SeatMap:
        """Cosmetic seat map: occupied seats from confirmed bookings plus free capacity"""
        flight = self.get_flight(flight_id)
        occupied = self.store.occupied_seats(flight_id)
        total_seats = flight.available_seats + len(occupied)
        return SeatMap(
            flight_id=flight.id,
            flight_number=flight.flight_number,
            available_seats=flight.available_seats,
            total_seats=total_seats,
            occupied_seats=occupied,
            seat_map=generate_seat_map(total_seats),
        )

    def _change_notice_job(self, flight: Flight, old: FlightSnapshot, new: FlightSnapshot,
                           details: BookingDetails) -> Optional[NotificationJob]:
        if not details.owner_email:
            logger.warning("Booking %s has no owner email; skipping change notice",
                           details.booking.booking_reference)
            return None

        passenger = details.passenger
        passenger_name = (passenger.full_name if passenger and passenger.full_name else None) \
            or details.owner_name or 'Passenger'
        notice = FlightChangeNotice(
            to=details.owner_email,
            booking_reference=details.booking.booking_reference,
            passenger_name=passenger_name,
            flight_number=flight.flight_number,
            origin=flight.origin.city if flight.origin else 'Unknown',
            destination=flight.destination.city if flight.destination else 'Unknown',
            old_departure_time=old.departure_time,
            new_departure_time=new.departure_time,
            old_arrival_time=old.arrival_time,
            new_arrival_time=new.arrival_time,
            old_price=old.price,
            new_price=new.price,
            old_status=old.status,
            new_status=new.status,
            seat_number=passenger.seat_number if passenger and passenger.seat_number else 'TBD',
        )
        subject, html, text = flight_change_email(notice)
        return NotificationJob(
            to=notice.to,
            passenger=passenger_name,
            booking_ref=notice.booking_reference,
            subject=subject,
            html=html,
            text=text,
        )

    def update_flight(self, flight_id: int, new_attributes: Dict,
                      identity: Optional[Identity]) -> FlightUpdateResult:
        """
        Update schedule, price, capacity and status of a flight and notify passengers

        The result reports success as soon as the flight row is written;
        individual notification failures only show up in the details.

        Raises:
            Unauthenticated, Forbidden, ValidationError, NotFound, TransactionFailure
        """
        self._require_admin(identity)
        new = parse_flight_update(new_attributes or {})

        flight = self.store.get_flight(flight_id)
        if not flight:
            raise NotFound(f"Flight with ID {flight_id} not found")
        old = FlightSnapshot.of(flight)

        self.store.update_flight(
            flight_id,
            departure_time=new.departure_time,
            arrival_time=new.arrival_time,
            duration=compute_duration(new.departure_time, new.arrival_time),
            price=new.price,
            available_seats=new.available_seats,
            status=new.status,
        )
        logger.info("Flight %s updated", flight.flight_number)

        has_changes = flight_change_is_significant(old, new)
        bookings: List[BookingDetails] = []
        outcomes = []

        if has_changes:
            try:
                bookings = self.store.confirmed_bookings_for_flight(flight_id)
            except Exception as e:
                # The flight row is already committed; report zero notifications
                logger.error("Error fetching bookings for notifications on flight %s: %s",
                             flight.flight_number, e)
                bookings = []

            jobs = [job for job in (self._change_notice_job(flight, old, new, details)
                                    for details in bookings) if job is not None]
            outcomes = self.dispatcher.dispatch_all(jobs)

        result = FlightUpdateResult(
            success=True,
            message='Flight updated successfully',
            flight_number=flight.flight_number,
            changes=summarize_flight_changes(old, new),
            notifications_sent=count_sent(outcomes),
            total_bookings=len(bookings),
            has_changes=has_changes,
            notification_details=outcomes,
        )
        if outcomes:
            logger.info("Flight %s change notices: %d of %d sent",
                        flight.flight_number, result.notifications_sent, len(outcomes))
        return result
