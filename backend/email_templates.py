"""
Email bodies for booking and flight-change notifications
Each builder returns ``(subject, html, text)``
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Optional, Tuple, Union

from database import FlightStatus
from .flight_changes import minutes_between

Rendered = Tuple[str, str, str]

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; background: %(accent)s; }
    .content { background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px; }
    .details { background: white; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid %(accent)s; }
    .changed { color: #c53030; font-weight: bold; }
    .footer { text-align: center; margin-top: 30px; padding-top: 20px; border-top: 1px solid #ddd; color: #666; font-size: 14px; }
"""

_FOOTER = "This is an automated email. Please do not reply to this message."


def format_timestamp(value: Union[datetime, str, None]) -> str:
    if value is None:
        return '-'
    if isinstance(value, str):
        return value
    return value.strftime('%a, %d %b %Y %H:%M %Z').strip()


def format_price(value: Union[Decimal, float, None]) -> str:
    if value is None:
        return '-'
    return f"${Decimal(str(value)):,.2f}"


@dataclass
class BookingEmailData:
    to: str
    booking_reference: str
    passenger_name: str
    flight_number: str
    origin: str
    destination: str
    departure_time: Union[datetime, str, None]
    arrival_time: Union[datetime, str, None]
    seat_number: str
    total_price: Union[Decimal, float, None]
    ticket_url: Optional[str] = None


@dataclass
class FlightChangeNotice:
    to: str
    booking_reference: str
    passenger_name: str
    flight_number: str
    origin: str
    destination: str
    old_departure_time: datetime
    new_departure_time: datetime
    old_arrival_time: datetime
    new_arrival_time: datetime
    old_price: Decimal
    new_price: Decimal
    old_status: FlightStatus
    new_status: FlightStatus
    seat_number: str = 'TBD'

    @property
    def departure_shift_minutes(self) -> int:
        return minutes_between(self.old_departure_time, self.new_departure_time)

    @property
    def arrival_shift_minutes(self) -> int:
        return minutes_between(self.old_arrival_time, self.new_arrival_time)


def _page(title: str, accent: str, heading: str, body_html: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{escape(title)}</title>
    <style>{_STYLE % {'accent': accent}}</style>
</head>
<body>
    <div class="header"><h1>{escape(heading)}</h1></div>
    <div class="content">
{body_html}
        <div class="footer"><p>{_FOOTER}</p></div>
    </div>
</body>
</html>
"""


def _itinerary_html(data: BookingEmailData) -> str:
    return f"""        <div class="details">
            <h3>Booking Reference: <strong>{escape(data.booking_reference)}</strong></h3>
            <p><b>From:</b> {escape(data.origin)}<br/>
            <b>To:</b> {escape(data.destination)}<br/>
            <b>Flight Number:</b> {escape(data.flight_number)}<br/>
            <b>Seat:</b> {escape(data.seat_number)}<br/>
            <b>Departure:</b> {escape(format_timestamp(data.departure_time))}<br/>
            <b>Arrival:</b> {escape(format_timestamp(data.arrival_time))}<br/>
            <b>Total Amount:</b> {escape(format_price(data.total_price))}</p>
        </div>"""


def _itinerary_text(data: BookingEmailData) -> str:
    return (
        f"From: {data.origin}\n"
        f"To: {data.destination}\n"
        f"Flight Number: {data.flight_number}\n"
        f"Seat: {data.seat_number}\n"
        f"Departure: {format_timestamp(data.departure_time)}\n"
        f"Arrival: {format_timestamp(data.arrival_time)}\n"
        f"Total Amount: {format_price(data.total_price)}"
    )


def booking_confirmation_email(data: BookingEmailData, app_url: str = '') -> Rendered:
    ticket_link = f"{app_url}{data.ticket_url}" if data.ticket_url else None
    link_html = (f'        <p><a href="{escape(ticket_link)}">View your ticket</a></p>\n'
                 if ticket_link else '')
    body = (
        f"        <p>Dear {escape(data.passenger_name)},</p>\n"
        "        <p>Thank you for choosing our airline! Your flight booking has been confirmed.</p>\n"
        f"{_itinerary_html(data)}\n"
        "        <p>Please arrive at the airport at least 2 hours before your departure time.</p>\n"
        f"{link_html}"
    )
    text = (
        f"Dear {data.passenger_name},\n\n"
        "Thank you for choosing our airline! Your flight booking has been confirmed.\n\n"
        f"Booking Reference: {data.booking_reference}\n\n"
        f"{_itinerary_text(data)}\n\n"
        "Please arrive at the airport at least 2 hours before your departure time.\n"
    )
    if ticket_link:
        text += f"\nView your ticket: {ticket_link}\n"
    text += "\nSafe travels!\n"
    subject = f"Flight Booking Confirmation - {data.booking_reference}"
    return subject, _page(subject, '#667eea', 'Flight Booking Confirmed!', body), text


def booking_cancellation_email(data: BookingEmailData) -> Rendered:
    body = (
        f"        <p>Dear {escape(data.passenger_name)},</p>\n"
        f"        <p>Your flight booking with reference <strong>{escape(data.booking_reference)}</strong>"
        " has been <b>cancelled</b>.</p>\n"
        f"{_itinerary_html(data)}\n"
        "        <p>If you have any questions, please contact our customer service team.</p>\n"
    )
    text = (
        f"Your flight booking ({data.booking_reference}) has been cancelled.\n"
        f"{_itinerary_text(data)}\n"
    )
    subject = f"Flight Booking Cancelled - {data.booking_reference}"
    return subject, _page(subject, '#e53e3e', 'Flight Booking Cancelled', body), text


def booking_modification_email(data: BookingEmailData) -> Rendered:
    body = (
        f"        <p>Dear {escape(data.passenger_name)},</p>\n"
        f"        <p>Your flight booking with reference <strong>{escape(data.booking_reference)}</strong>"
        " has been <b>modified</b>. The updated details are below.</p>\n"
        f"{_itinerary_html(data)}\n"
    )
    text = (
        f"Your flight booking ({data.booking_reference}) has been modified.\n"
        f"{_itinerary_text(data)}\n"
    )
    subject = f"Flight Booking Modified - {data.booking_reference}"
    return subject, _page(subject, '#3182ce', 'Flight Booking Modified', body), text


def flight_change_kind(notice: FlightChangeNotice) -> str:
    """Headline word for the notice subject"""
    if notice.old_status != notice.new_status:
        if notice.new_status == FlightStatus.CANCELLED:
            return 'Cancellation'
        if notice.new_status == FlightStatus.DELAYED:
            return 'Delay'
        return 'Update'
    shift = notice.departure_shift_minutes
    if abs(shift) > 30:
        return 'Delay' if shift > 0 else 'Schedule Change'
    return 'Update'


def _change_row(label: str, old: str, new: str) -> str:
    css = ' class="changed"' if old != new else ''
    return (f"            <tr><td><b>{escape(label)}</b></td><td>{escape(old)}</td>"
            f"<td{css}>{escape(new)}</td></tr>\n")


def flight_change_email(notice: FlightChangeNotice) -> Rendered:
    kind = flight_change_kind(notice)
    rows = [
        ('Departure', format_timestamp(notice.old_departure_time), format_timestamp(notice.new_departure_time)),
        ('Arrival', format_timestamp(notice.old_arrival_time), format_timestamp(notice.new_arrival_time)),
        ('Price', format_price(notice.old_price), format_price(notice.new_price)),
        ('Status', notice.old_status.value, notice.new_status.value),
    ]
    body = (
        f"        <p>Dear {escape(notice.passenger_name)},</p>\n"
        f"        <p>There has been a change to your flight <strong>{escape(notice.flight_number)}</strong>"
        f" from {escape(notice.origin)} to {escape(notice.destination)}"
        f" (booking <strong>{escape(notice.booking_reference)}</strong>, seat {escape(notice.seat_number)}).</p>\n"
        '        <div class="details">\n'
        "        <table>\n"
        "            <tr><th></th><th>Previous</th><th>Updated</th></tr>\n"
        + ''.join(_change_row(*row) for row in rows) +
        "        </table>\n"
        "        </div>\n"
        "        <p>If you have any questions, please contact our customer service team.</p>\n"
    )
    text_rows = '\n'.join(f"{label}: {old} -> {new}" for label, old, new in rows)
    text = (
        f"Dear {notice.passenger_name},\n\n"
        f"There has been a change to your flight {notice.flight_number} "
        f"from {notice.origin} to {notice.destination}.\n\n"
        f"Booking Reference: {notice.booking_reference}\n"
        f"Seat: {notice.seat_number}\n\n"
        f"{text_rows}\n\n"
        "If your flight is delayed by more than 3 hours, you may be eligible for compensation.\n"
        "Keep this email for your records.\n\n"
        "Thank you for your understanding and patience.\n"
    )
    subject = f"Flight {kind} - {notice.booking_reference} ({notice.flight_number})"
    return subject, _page(subject, '#dd6b20', f"Flight {kind} Notification", body), text
