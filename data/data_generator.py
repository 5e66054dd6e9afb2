"""
Sample data generator for populating the database with valid entries
Everything goes through the store and services so invariants hold for seeded data
"""
from datetime import datetime, timedelta, timezone
import logging
import random
from faker import Faker
from typing import Optional
import sys
import os

# Add parent directory to path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Identity, ReservationStore
from backend.auth_service import admin_allow_list
from backend.booking_service import BookingService
from backend.config import configure_logging
from backend.email_service import MockEmailSender
from backend.exceptions import ReservationError, SoldOut
from backend.flight_service import FlightService

logger = logging.getLogger(__name__)

SEED_ADMIN_EMAIL = 'seed-admin@example.com'


class DataGenerator:
    """Generate realistic sample data for the flight reservation core"""

    # Common airports
    AIRPORTS = [
        ('JFK', 'John F. Kennedy International', 'New York', 'United States'),
        ('LAX', 'Los Angeles International', 'Los Angeles', 'United States'),
        ('ORD', "O'Hare International", 'Chicago', 'United States'),
        ('DFW', 'Dallas/Fort Worth International', 'Dallas', 'United States'),
        ('DEN', 'Denver International', 'Denver', 'United States'),
        ('SFO', 'San Francisco International', 'San Francisco', 'United States'),
        ('SEA', 'Seattle-Tacoma International', 'Seattle', 'United States'),
        ('MIA', 'Miami International', 'Miami', 'United States'),
        ('ATL', 'Hartsfield-Jackson Atlanta International', 'Atlanta', 'United States'),
        ('BOS', 'Logan International', 'Boston', 'United States'),
        ('LHR', 'Heathrow', 'London', 'United Kingdom'),
        ('FRA', 'Frankfurt am Main', 'Frankfurt', 'Germany'),
    ]

    AIRLINES = [
        ('AA', 'American Airlines'),
        ('UA', 'United Airlines'),
        ('DL', 'Delta Air Lines'),
        ('BA', 'British Airways'),
        ('LH', 'Lufthansa'),
    ]

    AIRCRAFT_TYPES = ['Boeing 737-800', 'Airbus A320', 'Boeing 787-9', 'Airbus A350-900']
    CABIN_CLASSES = ['Economy', 'Premium Economy', 'Business']

    def __init__(self, store: Optional[ReservationStore] = None, seed: Optional[int] = None,
                 email_sender=None):
        """
        Initialize data generator

        Args:
            store: Reservation store to seed (defaults to the PostgreSQL store)
            seed: Random seed for reproducibility
            email_sender: Sender for booking confirmations (defaults to a mock, no mail leaves the box)
        """
        if seed:
            random.seed(seed)
            Faker.seed(seed)

        self.faker = Faker()
        self.store = store or ReservationStore()
        self.email_sender = email_sender or MockEmailSender()

        self.flight_service = FlightService(
            store=self.store,
            email_sender=self.email_sender,
            is_admin=admin_allow_list([SEED_ADMIN_EMAIL]),
        )
        self.booking_service = BookingService(store=self.store, email_sender=self.email_sender)
        self.admin = Identity(user_id=0, email=SEED_ADMIN_EMAIL, full_name='Seed Admin')

    def generate_reference_data(self):
        """
        Create the airline and airport tables

        Returns:
            Tuple of (airlines, airports) lists
        """
        airlines = [self.store.create_airline(code, name) for code, name in self.AIRLINES]
        airports = [
            self.store.create_airport(code, city, name=name, country=country)
            for code, name, city, country in self.AIRPORTS
        ]
        logger.info("Generated %d airlines and %d airports", len(airlines), len(airports))
        return airlines, airports

    def generate_users(self, count: int = 100):
        """
        Generate customer accounts

        Args:
            count: Number of users to generate

        Returns:
            List of identities for the created users
        """
        identities = []

        logger.info("Generating %d users...", count)

        for i in range(count):
            try:
                # Seeded accounts cannot log in; the hash is a placeholder
                user = self.store.create_user(self.faker.unique.email(), 'not_used', self.faker.name())
                identities.append(Identity(user_id=user.id, email=user.email, full_name=user.full_name))

                if (i + 1) % 100 == 0:
                    logger.info("  Created %d/%d users", i + 1, count)

            except ReservationError as e:
                logger.warning("  Error creating user: %s", e)

        logger.info("Generated %d users", len(identities))
        return identities

    def generate_flights(self, airlines: list, airports: list, count: int = 100, days_ahead: int = 30):
        """
        Generate flights

        Args:
            airlines: Airlines to pick from
            airports: Airports to pick routes from
            count: Number of flights to generate
            days_ahead: Number of days ahead to schedule flights

        Returns:
            List of created flights
        """
        flights = []

        logger.info("Generating %d flights...", count)

        for i in range(count):
            origin, destination = random.sample(airports, 2)
            airline = random.choice(airlines)

            # Random departure time in the next N days, at least an hour out
            departure = datetime.now(timezone.utc).replace(second=0, microsecond=0) + timedelta(
                days=random.randint(0, days_ahead),
                hours=random.randint(1, 23),
                minutes=random.choice([0, 15, 30, 45]),
            )
            arrival = departure + timedelta(hours=random.randint(1, 11), minutes=random.choice([0, 20, 40]))

            try:
                flight = self.flight_service.create_flight({
                    'flight_number': f"{airline.code}{random.randint(100, 9999)}",
                    'airline_id': airline.id,
                    'origin_airport_id': origin.id,
                    'destination_airport_id': destination.id,
                    'departure_time': departure,
                    'arrival_time': arrival,
                    'price': round(random.uniform(80, 1200), 2),
                    'available_seats': random.randint(20, 180),
                    'cabin_class': random.choice(self.CABIN_CLASSES),
                    'aircraft_type': random.choice(self.AIRCRAFT_TYPES),
                }, self.admin)
                flights.append(flight)

                if (i + 1) % 50 == 0:
                    logger.info("  Created %d/%d flights", i + 1, count)

            except ReservationError as e:
                logger.warning("  Error creating flight: %s", e)

        logger.info("Generated %d flights", len(flights))
        return flights

    def _passenger_details(self, identity: Identity) -> dict:
        return {
            'full_name': identity.full_name or self.faker.name(),
            'date_of_birth': self.faker.date_of_birth(minimum_age=1, maximum_age=90),
            'gender': random.choice(['Male', 'Female', 'Other']),
            'nationality': self.faker.country(),
            'passport_number': self.faker.bothify(text='??#######', letters='ABCDEFGHIJKLMNOPQRSTUVWXYZ'),
        }

    def generate_bookings(self, identities: list, flight_ids: list, count: int = 500,
                          max_attempt_multiplier: float = 3.0):
        """
        Generate bookings

        Args:
            identities: Users to book for
            flight_ids: List of flight IDs
            count: Number of bookings to generate
            max_attempt_multiplier: Retry multiplier to ensure requested volume

        Returns:
            List of booking confirmations
        """
        confirmations = []

        logger.info("Generating %d bookings...", count)

        attempts = 0
        max_attempts = max(count, int(count * max(1.0, max_attempt_multiplier)))

        while len(confirmations) < count and attempts < max_attempts:
            attempts += 1
            identity = random.choice(identities)
            try:
                confirmation = self.booking_service.create_booking(
                    flight_id=random.choice(flight_ids),
                    passenger_details=self._passenger_details(identity),
                    identity=identity,
                )
                confirmations.append(confirmation)

                if len(confirmations) % 500 == 0:
                    logger.info("  Created %d/%d bookings", len(confirmations), count)

            except SoldOut:
                continue
            except ReservationError as e:
                logger.warning("  Error creating booking: %s", e)

        if len(confirmations) < count:
            logger.warning(
                "Requested %d bookings but only created %d after %d attempts. "
                "Consider increasing flight capacity.", count, len(confirmations), attempts
            )

        logger.info("Generated %d bookings", len(confirmations))
        return confirmations

    def generate_sample_dataset(self, users: int = 200, flights: int = 150, bookings: int = 500):
        """
        Generate a complete sample dataset

        Returns:
            Dictionary with all generated data
        """
        logger.info("Generating sample dataset")

        airlines, airports = self.generate_reference_data()
        identities = self.generate_users(count=users)
        created_flights = self.generate_flights(airlines, airports, count=flights, days_ahead=60)
        confirmations = self.generate_bookings(
            identities=identities,
            flight_ids=[f.id for f in created_flights],
            count=bookings,
        )

        logger.info(
            "Dataset complete: %d airlines, %d airports, %d users, %d flights, %d bookings",
            len(airlines), len(airports), len(identities), len(created_flights), len(confirmations)
        )

        return {
            'airlines': airlines,
            'airports': airports,
            'users': identities,
            'flights': created_flights,
            'bookings': confirmations,
        }


def main():
    """Main function for command-line usage"""
    import argparse

    from database.database import get_db_manager

    parser = argparse.ArgumentParser(description='Generate sample data for the flight reservation core')
    parser.add_argument('--users', type=int, default=200, help='Number of users')
    parser.add_argument('--flights', type=int, default=150, help='Number of flights')
    parser.add_argument('--bookings', type=int, default=500, help='Number of bookings')
    parser.add_argument('--seed', type=int, help='Random seed for reproducibility')

    args = parser.parse_args()

    configure_logging()

    # Initialize database
    db_manager = get_db_manager()
    db_manager.create_tables()

    generator = DataGenerator(seed=args.seed)
    generator.generate_sample_dataset(users=args.users, flights=args.flights, bookings=args.bookings)


if __name__ == '__main__':
    main()
