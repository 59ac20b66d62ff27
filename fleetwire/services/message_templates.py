"""Plain-text message bodies for WhatsApp notifications.

WhatsApp renders ``*text*`` as bold; nothing else here is markup.
"""

from datetime import date, datetime


def format_amount(cents: int, symbol: str = "$") -> str:
    """Format integer cents as a currency string, e.g. ``$1,234.50``."""
    sign = "-" if cents < 0 else ""
    return f"{sign}{symbol}{abs(cents) / 100:,.2f}"


def format_day(value: str | date) -> str:
    """Format a YYYY-MM-DD string or ISO datetime as ``Monday, October 20, 2026``."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00")) if "T" in value else date.fromisoformat(value)
    return f"{value:%A}, {value:%B} {value.day}, {value:%Y}"


def invoice_reminder_message(
    customer_name: str,
    invoice_number: str,
    total_cents: int,
    balance_cents: int,
    due_date: str,
    organization_name: str,
    today: date | None = None,
    currency_symbol: str = "$",
) -> str:
    """Payment reminder for one invoice. Wording changes once the due date has passed."""
    today = today or date.today()
    overdue = date.fromisoformat(due_date) < today

    lines = [
        "*Invoice Reminder*",
        "",
        f"Dear {customer_name},",
        "",
        "This is a reminder that your invoice is now overdue."
        if overdue
        else "This is a friendly reminder about your upcoming invoice.",
        "",
        "*Invoice Details:*",
        f"   Invoice #: {invoice_number}",
        f"   Amount: {format_amount(total_cents, currency_symbol)}",
        f"   {'Was Due' if overdue else 'Due Date'}: {format_day(due_date)}",
    ]
    if balance_cents != total_cents:
        lines.append(f"   Balance Due: {format_amount(balance_cents, currency_symbol)}")
    lines += [
        "",
        "Please arrange for payment at your earliest convenience.",
        "",
        "Thank you for your business!",
        f"- {organization_name}",
    ]
    return "\n".join(lines)


def trip_assignment_message(
    driver_name: str,
    origin_city: str,
    destination_city: str,
    scheduled_date: str,
    truck_registration: str | None = None,
    customer_name: str | None = None,
    load_description: str | None = None,
) -> str:
    """Assignment notice for the driver of one trip."""
    lines = [
        "*New Trip Assignment*",
        "",
        f"Hello {driver_name}!",
        "",
        "You have been assigned a new trip:",
        "",
        f"*Route:* {origin_city} to {destination_city}",
        f"*Scheduled Date:* {format_day(scheduled_date)}",
    ]
    if truck_registration:
        lines.append(f"*Truck:* {truck_registration}")
    if customer_name:
        lines.append(f"*Customer:* {customer_name}")
    if load_description:
        lines.append(f"*Load:* {load_description}")
    lines += ["", "Please confirm receipt of this assignment."]
    return "\n".join(lines)


def daily_summary_message(organization_name: str, day: date, stats: dict[str, int]) -> str:
    """Operations summary for the organization's operator."""
    return "\n".join([
        f"*Daily Summary - {organization_name}*",
        format_day(day),
        "",
        f"Trips scheduled today: {stats['trips_today']}",
        f"Trips in progress: {stats['trips_in_progress']}",
        f"Overdue invoices: {stats['overdue_invoices']} "
        f"({format_amount(stats['overdue_balance_cents'])} outstanding)",
    ])
