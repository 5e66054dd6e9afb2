"""
PostgreSQL-backed store used by the service layer
All SQL for users, sessions, flights, bookings and passengers lives here
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import psycopg2
from psycopg2 import errors, sql
from psycopg2.extras import RealDictCursor

from backend.exceptions import (
    ConcurrentUpdate, NotFound, ReferenceCollision, SoldOut,
    TransactionFailure, ValidationError
)
from .database import DatabaseManager, get_db_manager
from .models import (
    Airline, Airport, BookingDetails, BookingStatus, Flight, FlightStatus, User,
    row_to_airline, row_to_airport, row_to_booking, row_to_flight,
    row_to_passenger, row_to_user
)

logger = logging.getLogger(__name__)

# Flight joined with airline and both airports, using prefixed columns
_FLIGHT_WITH_PLACES_QUERY = """
    SELECT f.*,
           al.id as al_id, al.code as al_code, al.name as al_name, al.logo_url as al_logo_url,
           o.id as o_id, o.code as o_code, o.name as o_name, o.city as o_city, o.country as o_country,
           d.id as d_id, d.code as d_code, d.name as d_name, d.city as d_city, d.country as d_country
    FROM flights f
    LEFT JOIN airlines al ON f.airline_id = al.id
    LEFT JOIN airports o ON f.origin_airport_id = o.id
    LEFT JOIN airports d ON f.destination_airport_id = d.id
"""

# Booking joined with passenger, owner and flight (with places)
_BOOKING_DETAILS_QUERY = """
    SELECT b.id, b.booking_reference, b.user_id, b.flight_id, b.booking_status,
           b.total_price, b.ticket_url, b.created_at, b.updated_at,
           p.id as p_id, p.full_name as p_full_name, p.date_of_birth as p_date_of_birth,
           p.gender as p_gender, p.nationality as p_nationality,
           p.passport_number as p_passport_number, p.seat_number as p_seat_number,
           u.email as u_email, u.full_name as u_full_name,
           f.id as f_id, f.flight_number as f_flight_number, f.airline_id as f_airline_id,
           f.origin_airport_id as f_origin_airport_id,
           f.destination_airport_id as f_destination_airport_id,
           f.departure_time as f_departure_time, f.arrival_time as f_arrival_time,
           f.duration as f_duration, f.price as f_price,
           f.available_seats as f_available_seats, f.status as f_status,
           f.cabin_class as f_cabin_class, f.aircraft_type as f_aircraft_type,
           al.id as al_id, al.code as al_code, al.name as al_name, al.logo_url as al_logo_url,
           o.id as o_id, o.code as o_code, o.name as o_name, o.city as o_city, o.country as o_country,
           d.id as d_id, d.code as d_code, d.name as d_name, d.city as d_city, d.country as d_country
    FROM bookings b
    LEFT JOIN passengers p ON p.booking_id = b.id
    LEFT JOIN users u ON b.user_id = u.id
    LEFT JOIN flights f ON b.flight_id = f.id
    LEFT JOIN airlines al ON f.airline_id = al.id
    LEFT JOIN airports o ON f.origin_airport_id = o.id
    LEFT JOIN airports d ON f.destination_airport_id = d.id
"""

PASSENGER_COLUMNS = ('full_name', 'date_of_birth', 'gender', 'nationality', 'passport_number')


def _prefixed(row, prefix: str) -> Dict:
    """Strip ``prefix`` from the matching keys of a joined row"""
    return {key[len(prefix):]: value for key, value in row.items() if key.startswith(prefix)}


def _attach_places(flight: Flight, row) -> Flight:
    if row.get('al_id'):
        flight.airline = row_to_airline(_prefixed(row, 'al_'))
    if row.get('o_id'):
        flight.origin = row_to_airport(_prefixed(row, 'o_'))
    if row.get('d_id'):
        flight.destination = row_to_airport(_prefixed(row, 'd_'))
    return flight


def _build_flight_with_places(row) -> Optional[Flight]:
    if not row:
        return None
    return _attach_places(row_to_flight(row), row)


def _build_booking_details(row) -> Optional[BookingDetails]:
    if not row:
        return None
    details = BookingDetails(
        booking=row_to_booking(row),
        owner_email=row.get('u_email'),
        owner_name=row.get('u_full_name'),
    )
    if row.get('p_id'):
        passenger = _prefixed(row, 'p_')
        passenger['booking_id'] = row['id']
        details.passenger = row_to_passenger(passenger)
    if row.get('f_id'):
        details.flight = _attach_places(row_to_flight(_prefixed(row, 'f_')), row)
    return details


class ReservationStore:
    """Query and transaction interface over the reservation tables"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self._db_manager = db_manager

    @property
    def db(self) -> DatabaseManager:
        return self._db_manager or get_db_manager()

    # ------------------------------------------------------------------
    # Users and sessions
    # ------------------------------------------------------------------

    def create_user(self, email: str, password_hash: str, full_name: Optional[str] = None) -> User:
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute("""
                    INSERT INTO users (email, password_hash, full_name)
                    VALUES (%s, %s, %s)
                    RETURNING id, email, password_hash, full_name, created_at, updated_at
                """, (email, password_hash, full_name))
                return row_to_user(cursor.fetchone())
        except errors.UniqueViolation:
            raise ValidationError(f"User with email {email} already exists")

    def get_user(self, user_id: int) -> Optional[User]:
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, email, password_hash, full_name, created_at, updated_at
                FROM users
                WHERE id = %s
            """, (user_id,))
            return row_to_user(cursor.fetchone())

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, email, password_hash, full_name, created_at, updated_at
                FROM users
                WHERE lower(email) = lower(%s)
            """, (email,))
            return row_to_user(cursor.fetchone())

    def create_session(self, token: str, user_id: int, expires_at: datetime) -> None:
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                INSERT INTO sessions (token, user_id, expires_at)
                VALUES (%s, %s, %s)
            """, (token, user_id, expires_at))

    def get_session(self, token: str):
        """Return ``(user, expires_at)`` for a token, or ``None``"""
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                SELECT u.id, u.email, u.full_name, u.created_at, u.updated_at, s.expires_at
                FROM sessions s
                JOIN users u ON s.user_id = u.id
                WHERE s.token = %s
            """, (token,))
            row = cursor.fetchone()
            if not row:
                return None
            return row_to_user(row), row['expires_at']

    def delete_session(self, token: str) -> None:
        with self.db.get_cursor() as cursor:
            cursor.execute("DELETE FROM sessions WHERE token = %s", (token,))

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def create_airline(self, code: str, name: str, logo_url: Optional[str] = None) -> Airline:
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                INSERT INTO airlines (code, name, logo_url)
                VALUES (%s, %s, %s)
                RETURNING id, code, name, logo_url
            """, (code, name, logo_url))
            return row_to_airline(cursor.fetchone())

    def create_airport(self, code: str, city: str, name: Optional[str] = None,
                       country: Optional[str] = None) -> Airport:
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                INSERT INTO airports (code, name, city, country)
                VALUES (%s, %s, %s, %s)
                RETURNING id, code, name, city, country
            """, (code, name, city, country))
            return row_to_airport(cursor.fetchone())

    def get_airline(self, airline_id: int) -> Optional[Airline]:
        with self.db.get_cursor() as cursor:
            cursor.execute("SELECT id, code, name, logo_url FROM airlines WHERE id = %s", (airline_id,))
            return row_to_airline(cursor.fetchone())

    def get_airport(self, airport_id: int) -> Optional[Airport]:
        with self.db.get_cursor() as cursor:
            cursor.execute("SELECT id, code, name, city, country FROM airports WHERE id = %s", (airport_id,))
            return row_to_airport(cursor.fetchone())

    # ------------------------------------------------------------------
    # Flights
    # ------------------------------------------------------------------

    def get_flight(self, flight_id: int) -> Optional[Flight]:
        with self.db.get_cursor() as cursor:
            cursor.execute(f"{_FLIGHT_WITH_PLACES_QUERY} WHERE f.id = %s", (flight_id,))
            return _build_flight_with_places(cursor.fetchone())

    def flight_exists(self, flight_id: int) -> bool:
        with self.db.get_cursor() as cursor:
            cursor.execute("SELECT 1 FROM flights WHERE id = %s", (flight_id,))
            return cursor.fetchone() is not None

    def create_flight(self, flight_number: str, airline_id: int, origin_airport_id: int,
                      destination_airport_id: int, departure_time: datetime, arrival_time: datetime,
                      duration: str, price: Decimal, available_seats: int, cabin_class: str,
                      status: FlightStatus = FlightStatus.SCHEDULED,
                      aircraft_type: Optional[str] = None) -> Flight:
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute("""
                    INSERT INTO flights (flight_number, airline_id, origin_airport_id,
                                         destination_airport_id, departure_time, arrival_time,
                                         duration, price, available_seats, status,
                                         cabin_class, aircraft_type)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                """, (flight_number, airline_id, origin_airport_id, destination_airport_id,
                      departure_time, arrival_time, duration, price, available_seats,
                      status.value, cabin_class, aircraft_type))
                flight_id = cursor.fetchone()['id']
        except psycopg2.Error as e:
            logger.error("Error creating flight %s: %s", flight_number, e)
            raise TransactionFailure(f"Failed to create flight: {e}") from e
        return self.get_flight(flight_id)

    def update_flight(self, flight_id: int, departure_time: datetime, arrival_time: datetime,
                      duration: str, price: Decimal, available_seats: int,
                      status: FlightStatus) -> None:
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute("""
                    UPDATE flights
                    SET departure_time = %s, arrival_time = %s, duration = %s,
                        price = %s, available_seats = %s, status = %s, updated_at = NOW()
                    WHERE id = %s
                    RETURNING id
                """, (departure_time, arrival_time, duration, price, available_seats,
                      status.value, flight_id))
                if cursor.fetchone() is None:
                    raise NotFound(f"Flight with ID {flight_id} not found")
        except psycopg2.Error as e:
            logger.error("Error updating flight %s: %s", flight_id, e)
            raise TransactionFailure(f"Failed to update flight: {e}") from e

    def list_flights(self, status: Optional[FlightStatus] = None) -> List[Flight]:
        where = "WHERE f.status = %s" if status else ""
        params = (status.value,) if status else ()
        with self.db.get_cursor() as cursor:
            cursor.execute(f"""
                SELECT flights_with_places.*,
                       (SELECT COUNT(*) FROM bookings b
                        WHERE b.flight_id = flights_with_places.id
                          AND b.booking_status = 'CONFIRMED') AS confirmed_bookings
                FROM ({_FLIGHT_WITH_PLACES_QUERY} {where}) AS flights_with_places
                ORDER BY departure_time ASC
            """, params)
            flights = []
            for row in cursor.fetchall():
                flight = _build_flight_with_places(row)
                flight.confirmed_bookings = row['confirmed_bookings']
                flights.append(flight)
            return flights

    def search_flights(self, origin_airport_id: int, destination_airport_id: int,
                       window_start: datetime, window_end: datetime, not_before: datetime,
                       cabin_class: Optional[str] = None) -> List[Flight]:
        """Flights on a route departing in ``[window_start, window_end)`` and not before ``not_before``"""
        conditions = [
            "f.origin_airport_id = %s",
            "f.destination_airport_id = %s",
            "f.departure_time >= %s",
            "f.departure_time < %s",
            "f.departure_time >= %s",
        ]
        params = [origin_airport_id, destination_airport_id, window_start, window_end, not_before]

        if cabin_class:
            conditions.append("f.cabin_class = %s")
            params.append(cabin_class)

        with self.db.get_cursor() as cursor:
            cursor.execute(f"""
                {_FLIGHT_WITH_PLACES_QUERY}
                WHERE {' AND '.join(conditions)}
                ORDER BY f.departure_time ASC
            """, params)
            return [_build_flight_with_places(row) for row in cursor.fetchall()]

    def occupied_seats(self, flight_id: int) -> List[str]:
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                SELECT p.seat_number
                FROM bookings b
                JOIN passengers p ON p.booking_id = b.id
                WHERE b.flight_id = %s
                  AND b.booking_status = %s
                  AND p.seat_number IS NOT NULL
                ORDER BY b.id
            """, (flight_id, BookingStatus.CONFIRMED.value))
            return [row['seat_number'] for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def book_flight(self, user_id: int, flight_id: int, passenger: Dict, seat_number: str,
                    booking_reference: str, total_price: Decimal) -> int:
        """
        Run the ``book_flight`` procedure: booking, passenger and seat decrement
        commit together or not at all.

        Returns:
            New booking ID

        Raises:
            SoldOut, NotFound, ReferenceCollision, ConcurrentUpdate, TransactionFailure
        """
        try:
            with self.db.transaction() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.execute("""
                        SELECT book_flight(%s, %s, %s, %s, %s, %s, %s, %s, %s, %s) AS booking_id
                    """, (user_id, flight_id, passenger['full_name'], passenger.get('date_of_birth'),
                          passenger.get('gender'), passenger.get('nationality'),
                          passenger.get('passport_number'), seat_number, booking_reference,
                          total_price))
                    return cursor.fetchone()['booking_id']
        except errors.RaiseException as e:
            if e.diag.message_hint == 'SOLD_OUT':
                raise SoldOut(f"Flight {flight_id} has no seats available") from e
            if e.diag.message_hint == 'FLIGHT_NOT_FOUND':
                raise NotFound(f"Flight with ID {flight_id} not found") from e
            raise TransactionFailure(str(e)) from e
        except errors.UniqueViolation as e:
            if e.diag.constraint_name == 'bookings_booking_reference_key':
                raise ReferenceCollision(f"Booking reference {booking_reference} already exists") from e
            raise TransactionFailure(str(e)) from e
        except psycopg2.extensions.TransactionRollbackError as e:
            raise ConcurrentUpdate(str(e)) from e
        except psycopg2.Error as e:
            raise TransactionFailure(str(e)) from e

    def set_ticket_url(self, booking_id: int, ticket_url: str) -> None:
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute("""
                    UPDATE bookings SET ticket_url = %s, updated_at = NOW() WHERE id = %s
                """, (ticket_url, booking_id))
        except psycopg2.Error as e:
            raise TransactionFailure(f"Failed to store ticket URL: {e}") from e

    def get_booking(self, booking_id: int):
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                SELECT id, booking_reference, user_id, flight_id, booking_status,
                       total_price, ticket_url, created_at, updated_at
                FROM bookings
                WHERE id = %s
            """, (booking_id,))
            return row_to_booking(cursor.fetchone())

    def get_booking_details(self, booking_id: int) -> Optional[BookingDetails]:
        with self.db.get_cursor() as cursor:
            cursor.execute(f"{_BOOKING_DETAILS_QUERY} WHERE b.id = %s", (booking_id,))
            return _build_booking_details(cursor.fetchone())

    def set_booking_status(self, booking_id: int, status: BookingStatus) -> None:
        try:
            with self.db.get_cursor() as cursor:
                cursor.execute("""
                    UPDATE bookings SET booking_status = %s, updated_at = NOW() WHERE id = %s
                """, (status.value, booking_id))
        except psycopg2.Error as e:
            raise TransactionFailure(f"Failed to update booking status: {e}") from e

    def apply_booking_modification(self, booking_id: int, passenger_fields: Dict,
                                   new_flight_id: Optional[int] = None) -> None:
        """Re-point the booking and update passenger fields in one transaction"""
        try:
            with self.db.transaction() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    if new_flight_id is not None:
                        cursor.execute("""
                            UPDATE bookings SET flight_id = %s, updated_at = NOW() WHERE id = %s
                        """, (new_flight_id, booking_id))
                    if passenger_fields:
                        assignments = sql.SQL(', ').join(
                            sql.SQL("{} = %s").format(sql.Identifier(column))
                            for column in passenger_fields
                        )
                        cursor.execute(
                            sql.SQL("UPDATE passengers SET {}, updated_at = NOW() WHERE booking_id = %s")
                            .format(assignments),
                            list(passenger_fields.values()) + [booking_id]
                        )
        except psycopg2.Error as e:
            raise TransactionFailure(f"Failed to modify booking: {e}") from e

    def confirmed_bookings_for_flight(self, flight_id: int) -> List[BookingDetails]:
        with self.db.get_cursor() as cursor:
            cursor.execute(f"""
                {_BOOKING_DETAILS_QUERY}
                WHERE b.flight_id = %s AND b.booking_status = %s
                ORDER BY b.id
            """, (flight_id, BookingStatus.CONFIRMED.value))
            return [_build_booking_details(row) for row in cursor.fetchall()]

    def list_bookings(self, status: Optional[BookingStatus] = None) -> List[BookingDetails]:
        where = "WHERE b.booking_status = %s" if status else ""
        params = (status.value,) if status else ()
        with self.db.get_cursor() as cursor:
            cursor.execute(f"""
                {_BOOKING_DETAILS_QUERY}
                {where}
                ORDER BY b.created_at DESC, b.id DESC
            """, params)
            return [_build_booking_details(row) for row in cursor.fetchall()]

    def booking_stats(self) -> Dict:
        """Counts and revenue over every booking"""
        with self.db.get_cursor() as cursor:
            cursor.execute("""
                SELECT COUNT(*) AS total_bookings,
                       COUNT(*) FILTER (WHERE booking_status = 'CONFIRMED') AS confirmed_bookings,
                       COUNT(*) FILTER (WHERE booking_status = 'CANCELLED') AS cancelled_bookings,
                       COALESCE(SUM(total_price), 0) AS total_revenue
                FROM bookings
            """)
            return dict(cursor.fetchone())

    def list_user_bookings(self, user_id: int) -> List[BookingDetails]:
        with self.db.get_cursor() as cursor:
            cursor.execute(f"""
                {_BOOKING_DETAILS_QUERY}
                WHERE b.user_id = %s
                ORDER BY b.created_at DESC, b.id DESC
            """, (user_id,))
            return [_build_booking_details(row) for row in cursor.fetchall()]
