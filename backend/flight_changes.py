"""
Flight update diffing: input coercion, duration, significance and admin summary
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from database import Flight, FlightStatus
from .exceptions import ValidationError

# Price movement that warrants telling passengers
NOTIFY_PRICE_THRESHOLD = Decimal('5')
# Price movement worth mentioning to the admin
SUMMARY_PRICE_THRESHOLD = Decimal('0.01')

UPDATE_REQUIRED_FIELDS = ('departure_time', 'arrival_time', 'price', 'available_seats', 'status')


@dataclass(frozen=True)
class FlightSnapshot:
    """The attributes compared between the stored flight and an update"""
    departure_time: datetime
    arrival_time: datetime
    price: Decimal
    available_seats: int
    status: FlightStatus

    @classmethod
    def of(cls, flight: Flight) -> 'FlightSnapshot':
        return cls(
            departure_time=flight.departure_time,
            arrival_time=flight.arrival_time,
            price=Decimal(str(flight.price)),
            available_seats=flight.available_seats,
            status=flight.status,
        )


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Accept datetimes or ISO 8601 strings (``Z`` suffix allowed); naive values are UTC"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO 8601 timestamp")
    else:
        raise ValidationError(f"{field_name} must be an ISO 8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: Any, field_name: str) -> date:
    """Calendar day from a date, a datetime or a ``YYYY-MM-DD`` string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"{field_name} must be a date (YYYY-MM-DD)")


def parse_price(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError("price must be a number")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("price must be a number")
    if not price.is_finite():
        raise ValidationError("price must be a number")
    if price < 0:
        raise ValidationError("Price and available seats must be non-negative")
    return price


def parse_seats(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("available_seats must be an integer")
    try:
        seats = int(value)
    except (TypeError, ValueError):
        raise ValidationError("available_seats must be an integer")
    if isinstance(value, float) and value != seats:
        raise ValidationError("available_seats must be an integer")
    if seats < 0:
        raise ValidationError("Price and available seats must be non-negative")
    return seats


def parse_status(value: Any) -> FlightStatus:
    if isinstance(value, FlightStatus):
        return value
    try:
        return FlightStatus(str(value).upper())
    except ValueError:
        allowed = ', '.join(status.value for status in FlightStatus)
        raise ValidationError(f"status must be one of {allowed}")


def is_missing(attributes: Dict[str, Any], key: str) -> bool:
    value = attributes.get(key)
    return value is None or (isinstance(value, str) and not value.strip())


def parse_flight_update(attributes: Dict[str, Any]) -> FlightSnapshot:
    """Validate an admin update; every compared field is mandatory"""
    missing = [key for key in UPDATE_REQUIRED_FIELDS if is_missing(attributes, key)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    snapshot = FlightSnapshot(
        departure_time=parse_timestamp(attributes['departure_time'], 'departure_time'),
        arrival_time=parse_timestamp(attributes['arrival_time'], 'arrival_time'),
        price=parse_price(attributes['price']),
        available_seats=parse_seats(attributes['available_seats']),
        status=parse_status(attributes['status']),
    )
    if snapshot.departure_time >= snapshot.arrival_time:
        raise ValidationError("Departure time must be before arrival time")
    return snapshot


def compute_duration(departure_time: datetime, arrival_time: datetime) -> str:
    """``"{h}h {m}m"`` using floored hours and floored remaining minutes"""
    total_minutes = int((arrival_time - departure_time).total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


def flight_change_is_significant(old: FlightSnapshot, new: FlightSnapshot) -> bool:
    return (
        old.departure_time != new.departure_time
        or old.arrival_time != new.arrival_time
        or old.status != new.status
        or abs(new.price - old.price) > NOTIFY_PRICE_THRESHOLD
    )


def minutes_between(old: datetime, new: datetime) -> int:
    """Whole-minute shift, halves rounded up (-1.5 -> -1, 0.5 -> 1)"""
    return math.floor((new - old).total_seconds() / 60 + 0.5)


def _signed(value) -> str:
    return '+' if value > 0 else ''


def summarize_flight_changes(old: FlightSnapshot, new: FlightSnapshot) -> List[str]:
    """Human readable change list for the admin, independent of significance"""
    changes = []
    if old.departure_time != new.departure_time:
        minutes = minutes_between(old.departure_time, new.departure_time)
        changes.append(f"Departure time: {_signed(minutes)}{minutes} minutes")
    if old.arrival_time != new.arrival_time:
        minutes = minutes_between(old.arrival_time, new.arrival_time)
        changes.append(f"Arrival time: {_signed(minutes)}{minutes} minutes")
    if old.status != new.status:
        changes.append(f"Status: {old.status.value} → {new.status.value}")
    delta = new.price - old.price
    if abs(delta) > SUMMARY_PRICE_THRESHOLD:
        changes.append(f"Price: {_signed(delta)}${delta:.2f}")
    return changes
