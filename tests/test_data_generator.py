"""Sample data generator against the in-memory store."""
from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from data.data_generator import DataGenerator
from database import BookingStatus


def test_generate_sample_dataset(store):
    generator = DataGenerator(store=store, seed=1234)

    dataset = generator.generate_sample_dataset(users=10, flights=5, bookings=20)

    assert len(dataset['airlines']) == len(DataGenerator.AIRLINES)
    assert len(dataset['airports']) == len(DataGenerator.AIRPORTS)
    assert len(dataset['users']) == 10
    assert len(dataset['flights']) == 5
    assert len(dataset['bookings']) == 20

    for flight in dataset['flights']:
        assert flight.origin_airport_id != flight.destination_airport_id
        assert flight.departure_time < flight.arrival_time
        assert store.get_flight(flight.id).available_seats >= 0

    assert all(b.booking_status == BookingStatus.CONFIRMED for b in store.bookings.values())
    assert len(generator.email_sender.sent) == 20
