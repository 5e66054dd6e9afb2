"""Database package initialization"""
from .models import (
    User, Identity, Airline, Airport, Flight, Passenger, Booking, BookingDetails,
    NotificationOutcome, BookingConfirmation, LifecycleResult, FlightUpdateResult, SeatMap, BookingListing,
    FlightStatus, BookingStatus,
    row_to_user, row_to_airline, row_to_airport, row_to_flight,
    row_to_passenger, row_to_booking
)
from .database import DatabaseManager, get_db_manager, set_db_manager
from .store import ReservationStore

__all__ = [
    'User', 'Identity', 'Airline', 'Airport', 'Flight', 'Passenger', 'Booking', 'BookingDetails',
    'NotificationOutcome', 'BookingConfirmation', 'LifecycleResult', 'FlightUpdateResult', 'SeatMap', 'BookingListing',
    'FlightStatus', 'BookingStatus',
    'row_to_user', 'row_to_airline', 'row_to_airport', 'row_to_flight',
    'row_to_passenger', 'row_to_booking',
    'DatabaseManager', 'get_db_manager', 'set_db_manager', 'ReservationStore'
]
