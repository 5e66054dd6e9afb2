"""
Data models for the flight reservation core
Plain Python classes and enums (no ORM)
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
import enum


class FlightStatus(enum.Enum):
    """Flight status enumeration"""
    SCHEDULED = "SCHEDULED"
    DELAYED = "DELAYED"
    CANCELLED = "CANCELLED"
    BOARDING = "BOARDING"


class BookingStatus(enum.Enum):
    """Booking status enumeration. CANCELLED is terminal."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


@dataclass
class User:
    """Registered account, the owner of bookings"""
    id: Optional[int] = None
    email: Optional[str] = None
    password_hash: Optional[str] = None
    full_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"


@dataclass(frozen=True)
class Identity:
    """Verified caller identity handed out by the auth service"""
    user_id: int
    email: str
    full_name: Optional[str] = None


@dataclass
class Airline:
    id: Optional[int] = None
    code: Optional[str] = None
    name: Optional[str] = None
    logo_url: Optional[str] = None


@dataclass
class Airport:
    id: Optional[int] = None
    code: Optional[str] = None
    name: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    def label(self) -> str:
        """Display form used in emails, e.g. ``London (LHR)``"""
        return f"{self.city} ({self.code})"


@dataclass
class Flight:
    """Flight model with schedule and capacity information"""
    id: Optional[int] = None
    flight_number: Optional[str] = None
    airline_id: Optional[int] = None
    origin_airport_id: Optional[int] = None
    destination_airport_id: Optional[int] = None
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    duration: Optional[str] = None
    price: Optional[Decimal] = None
    available_seats: Optional[int] = None
    status: Optional[FlightStatus] = None
    cabin_class: Optional[str] = None
    aircraft_type: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # For joined queries
    airline: Optional[Airline] = None
    origin: Optional[Airport] = None
    destination: Optional[Airport] = None
    confirmed_bookings: Optional[int] = None

    def __repr__(self):
        return f"<Flight(id={self.id}, number='{self.flight_number}', status={self.status.value if self.status else None})>"

    @property
    def origin_label(self) -> str:
        return self.origin.label() if self.origin else '-'

    @property
    def destination_label(self) -> str:
        return self.destination.label() if self.destination else '-'


@dataclass
class Passenger:
    """Traveller attached 1:1 to a booking"""
    id: Optional[int] = None
    booking_id: Optional[int] = None
    full_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    nationality: Optional[str] = None
    passport_number: Optional[str] = None
    seat_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<Passenger(id={self.id}, name='{self.full_name}', seat='{self.seat_number}')>"


@dataclass
class Booking:
    """Booking model linking a user to a flight"""
    id: Optional[int] = None
    booking_reference: Optional[str] = None
    user_id: Optional[int] = None
    flight_id: Optional[int] = None
    booking_status: Optional[BookingStatus] = None
    total_price: Optional[Decimal] = None
    ticket_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self):
        return f"<Booking(id={self.id}, ref='{self.booking_reference}', status={self.booking_status.value if self.booking_status else None})>"


@dataclass
class BookingDetails:
    """Denormalized view of a booking used for tickets and notification emails"""
    booking: Booking
    flight: Optional[Flight] = None
    passenger: Optional[Passenger] = None
    owner_email: Optional[str] = None
    owner_name: Optional[str] = None


@dataclass
class NotificationOutcome:
    """Per-recipient result of a notification attempt. Never persisted."""
    email: str
    passenger: str
    booking_ref: str
    status: str
    error: Optional[str] = None

    SENT = 'sent'
    FAILED = 'failed'

    @property
    def sent(self) -> bool:
        return self.status == self.SENT


@dataclass
class BookingConfirmation:
    booking_id: int
    booking_reference: str
    ticket_url: Optional[str]
    seat_number: str
    notification: Optional[NotificationOutcome] = None


@dataclass
class LifecycleResult:
    success: bool
    message: str
    notification: Optional[NotificationOutcome] = None


@dataclass
class FlightUpdateResult:
    """Outcome of an admin flight update. ``success`` reflects the database write only."""
    success: bool
    message: str
    flight_number: Optional[str]
    changes: List[str] = field(default_factory=list)
    notifications_sent: int = 0
    total_bookings: int = 0
    has_changes: bool = False
    notification_details: List[NotificationOutcome] = field(default_factory=list)


@dataclass
class SeatMap:
    flight_id: int
    flight_number: str
    available_seats: int
    total_seats: int
    occupied_seats: List[str]
    seat_map: List[str]


@dataclass
class BookingListing:
    """Admin view of bookings; the counts always cover every booking, not just the filtered page"""
    bookings: List[BookingDetails]
    total_bookings: int = 0
    confirmed_bookings: int = 0
    cancelled_bookings: int = 0
    total_revenue: Decimal = Decimal('0')

    @property
    def average_revenue(self) -> Decimal:
        if not self.total_bookings:
            return Decimal('0')
        return self.total_revenue / self.total_bookings


def row_to_user(row) -> User:
    """Convert database row to User object"""
    if not row:
        return None
    return User(
        id=row['id'],
        email=row['email'],
        password_hash=row.get('password_hash'),
        full_name=row.get('full_name'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_airline(row) -> Airline:
    """Convert database row to Airline object"""
    if not row:
        return None
    return Airline(
        id=row['id'],
        code=row['code'],
        name=row['name'],
        logo_url=row.get('logo_url')
    )


def row_to_airport(row) -> Airport:
    """Convert database row to Airport object"""
    if not row:
        return None
    return Airport(
        id=row['id'],
        code=row['code'],
        name=row.get('name'),
        city=row['city'],
        country=row.get('country')
    )


def row_to_flight(row) -> Flight:
    """Convert database row to Flight object"""
    if not row:
        return None
    return Flight(
        id=row['id'],
        flight_number=row['flight_number'],
        airline_id=row.get('airline_id'),
        origin_airport_id=row.get('origin_airport_id'),
        destination_airport_id=row.get('destination_airport_id'),
        departure_time=row['departure_time'],
        arrival_time=row['arrival_time'],
        duration=row.get('duration'),
        price=row['price'],
        available_seats=row['available_seats'],
        status=FlightStatus(row['status']) if row['status'] else None,
        cabin_class=row.get('cabin_class'),
        aircraft_type=row.get('aircraft_type'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_passenger(row) -> Passenger:
    """Convert database row to Passenger object"""
    if not row:
        return None
    return Passenger(
        id=row['id'],
        booking_id=row['booking_id'],
        full_name=row['full_name'],
        date_of_birth=row.get('date_of_birth'),
        gender=row.get('gender'),
        nationality=row.get('nationality'),
        passport_number=row.get('passport_number'),
        seat_number=row.get('seat_number'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )


def row_to_booking(row) -> Booking:
    """Convert database row to Booking object"""
    if not row:
        return None
    return Booking(
        id=row['id'],
        booking_reference=row['booking_reference'],
        user_id=row['user_id'],
        flight_id=row['flight_id'],
        booking_status=BookingStatus(row['booking_status']) if row['booking_status'] else None,
        total_price=row.get('total_price'),
        ticket_url=row.get('ticket_url'),
        created_at=row.get('created_at'),
        updated_at=row.get('updated_at')
    )
