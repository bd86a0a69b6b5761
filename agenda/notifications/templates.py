"""WhatsApp message templates for appointment notifications.

All render functions are pure: they only read the view they are given. ``render`` picks
the template for a kind and audience and falls back to a short generic message when a
template cannot be formatted, so a bad row never blocks a notification.
"""

import logging
from datetime import date, datetime, time
from decimal import Decimal

from agenda.core.config import CURRENCY_SYMBOL
from agenda.models.notification import NotificationKind
from agenda.notifications.views import AppointmentNotificationView, PreviousSchedule

logger = logging.getLogger(__name__)

CLIENT = "client"
STAFF = "staff"

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def format_money(value) -> str:
    amount = Decimal(value if value is not None else 0).quantize(Decimal("0.01"))
    return f"{CURRENCY_SYMBOL} {amount:,.2f}"


def format_date(value: date | str) -> str:
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    if isinstance(value, datetime):
        value = value.date()
    return f"{WEEKDAY_NAMES[value.weekday()]}, {MONTH_NAMES[value.month - 1]} {value.day}, {value.year}"


def format_time(value: time) -> str:
    if value == time.max:
        return "24:00"
    return value.strftime("%H:%M")


def _service_lines(view: AppointmentNotificationView) -> str:
    if not view.services:
        return "- (no services listed)"
    return "\n".join(f"- {line.name} ({format_money(line.price)})" for line in view.services)


def _details(view: AppointmentNotificationView) -> str:
    lines = [
        f"Date: {format_date(view.day)}",
        f"Time: {format_time(view.start_time)} - {format_time(view.end_time)}",
        f"Professional: {view.agent_name}",
        f"Location: {view.location_name}",
    ]
    if view.location_address:
        lines.append(f"Address: {view.location_address}")
    return "\n".join(lines)


def _loyalty_block(view: AppointmentNotificationView) -> str:
    loyalty = view.loyalty
    if loyalty is None:
        return ""

    lines = ["", "*Loyalty points*"]
    if loyalty.earned_this_booking:
        lines.append(f"You will earn {loyalty.earned_this_booking} points with this booking.")
    lines.append(f"Current balance: {loyalty.balance} points.")
    if loyalty.eligible_to_redeem:
        lines.append("You already have enough points to redeem a reward!")
    return "\n".join(lines)


def _contact_line(view: AppointmentNotificationView) -> str:
    if view.location_phone:
        return f"Questions? Call us at {view.location_phone}."
    return "Questions? Just reply to this message."


def confirmation_client(view: AppointmentNotificationView) -> str:
    return "\n".join(
        [
            "*Appointment confirmed!*",
            "",
            f"Hi {view.client_name}, your appointment is booked.",
            "",
            _details(view),
            "",
            "*Services:*",
            _service_lines(view),
            "",
            f"*Total: {format_money(view.total_value)}*",
            _loyalty_block(view),
            "",
            "Please arrive 10 minutes early. If you cannot make it, let us know in advance.",
            _contact_line(view),
        ]
    ).replace("\n\n\n", "\n\n")


def confirmation_staff(view: AppointmentNotificationView) -> str:
    return "\n".join(
        [
            "*New appointment*",
            "",
            f"Client: {view.client_name}",
            f"Phone: {view.client_phone or '-'}",
            _details(view),
            "",
            "*Services:*",
            _service_lines(view),
            f"Total: {format_money(view.total_value)}",
        ]
    )


def cancellation_client(view: AppointmentNotificationView) -> str:
    return "\n".join(
        [
            "*Appointment cancelled*",
            "",
            f"Hi {view.client_name}, your appointment on {format_date(view.day)} "
            f"at {format_time(view.start_time)} with {view.agent_name} was cancelled.",
            "",
            "We hope to see you again soon. Reply to this message to book a new time.",
            _contact_line(view),
        ]
    )


def cancellation_staff(view: AppointmentNotificationView) -> str:
    return "\n".join(
        [
            "*Appointment cancelled*",
            "",
            f"Client: {view.client_name}",
            f"Date: {format_date(view.day)}",
            f"Time: {format_time(view.start_time)} - {format_time(view.end_time)}",
            "This time is available again.",
        ]
    )


def _previous_line(previous: PreviousSchedule | None) -> str:
    if previous is None:
        return "Your appointment has a new time."
    return f"Previously: {format_date(previous.day)} at {format_time(previous.start_time)}"


def reschedule_client(view: AppointmentNotificationView, previous: PreviousSchedule | None = None) -> str:
    return "\n".join(
        [
            "*Appointment rescheduled*",
            "",
            f"Hi {view.client_name}, your appointment was moved.",
            _previous_line(previous),
            "",
            "*New schedule:*",
            _details(view),
            "",
            _contact_line(view),
        ]
    )


def reschedule_staff(view: AppointmentNotificationView, previous: PreviousSchedule | None = None) -> str:
    return "\n".join(
        [
            "*Appointment rescheduled*",
            "",
            f"Client: {view.client_name}",
            _previous_line(previous),
            f"Now: {format_date(view.day)} at {format_time(view.start_time)} - {format_time(view.end_time)}",
        ]
    )


def reminder_24h_client(view: AppointmentNotificationView) -> str:
    return "\n".join(
        [
            "*Appointment reminder*",
            "",
            f"Hi {view.client_name}, this is a reminder of your appointment tomorrow.",
            "",
            _details(view),
            "",
            "*Services:*",
            _service_lines(view),
            "",
            "If you need to reschedule, please let us know as soon as possible.",
            _contact_line(view),
        ]
    )


def reminder_2h_client(view: AppointmentNotificationView) -> str:
    return "\n".join(
        [
            "*See you soon!*",
            "",
            f"Hi {view.client_name}, your appointment is today at {format_time(view.start_time)} "
            f"with {view.agent_name} at {view.location_name}.",
            "",
            "Please arrive a few minutes early.",
        ]
    )


TEMPLATES = {
    (NotificationKind.CONFIRMATION.value, CLIENT): confirmation_client,
    (NotificationKind.CONFIRMATION.value, STAFF): confirmation_staff,
    (NotificationKind.CANCELLATION.value, CLIENT): cancellation_client,
    (NotificationKind.CANCELLATION.value, STAFF): cancellation_staff,
    (NotificationKind.RESCHEDULE.value, CLIENT): reschedule_client,
    (NotificationKind.RESCHEDULE.value, STAFF): reschedule_staff,
    (NotificationKind.REMINDER_24H.value, CLIENT): reminder_24h_client,
    (NotificationKind.REMINDER_2H.value, CLIENT): reminder_2h_client,
}

STAFF_KINDS = {kind for kind, audience in TEMPLATES if audience == STAFF}


def fallback_message(kind: str, view: AppointmentNotificationView) -> str:
    name = getattr(view, "client_name", "") or "there"
    return (
        f"Hi {name}, there is an update about your appointment "
        f"#{getattr(view, 'appointment_id', '')} ({kind}). "
        "Please contact us for details."
    )


def render(
    kind: NotificationKind | str,
    audience: str,
    view: AppointmentNotificationView,
    previous: PreviousSchedule | None = None,
) -> str:
    kind = NotificationKind(kind).value
    template = TEMPLATES.get((kind, audience))
    if template is None:
        raise ValueError(f"No {audience} template for {kind} notifications.")

    try:
        if kind == NotificationKind.RESCHEDULE.value:
            return template(view, previous)
        return template(view)
    except Exception:
        logger.exception(
            "Failed to render %s %s message for appointment %s; using fallback",
            kind,
            audience,
            getattr(view, "appointment_id", None),
        )
        return fallback_message(kind, view)
