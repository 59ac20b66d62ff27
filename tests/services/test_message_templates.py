"""Tests for WhatsApp message bodies."""

from datetime import date

import pytest

from fleetwire.services.message_templates import (
    daily_summary_message,
    format_amount,
    format_day,
    invoice_reminder_message,
    trip_assignment_message,
)


class TestFormatting:

    @pytest.mark.parametrize(
        "cents,expected",
        [(0, "$0.00"), (125000, "$1,250.00"), (99, "$0.99"), (-4550, "-$45.50")],
    )
    def test_format_amount(self, cents, expected):
        assert format_amount(cents) == expected

    def test_format_amount_symbol(self):
        assert format_amount(1000, "R") == "R10.00"

    def test_format_day_from_date_string(self):
        assert format_day("2026-10-20") == "Tuesday, October 20, 2026"

    def test_format_day_from_iso_datetime(self):
        assert format_day("2026-10-21T06:00:00Z") == "Wednesday, October 21, 2026"


class TestInvoiceReminder:

    def _message(self, **overrides):
        fields = dict(
            customer_name="Karoo Farms",
            invoice_number="INV-1001",
            total_cents=125000,
            balance_cents=125000,
            due_date="2026-10-10",
            organization_name="Acme Haulage",
            today=date(2026, 10, 20),
        )
        fields.update(overrides)
        return invoice_reminder_message(**fields)

    def test_overdue_wording(self):
        message = self._message()
        assert message.startswith("*Invoice Reminder*")
        assert "Dear Karoo Farms," in message
        assert "now overdue" in message
        assert "Invoice #: INV-1001" in message
        assert "Amount: $1,250.00" in message
        assert "Was Due: Saturday, October 10, 2026" in message
        assert message.endswith("- Acme Haulage")

    def test_upcoming_wording(self):
        message = self._message(due_date="2026-10-25")
        assert "friendly reminder" in message
        assert "Due Date: Sunday, October 25, 2026" in message

    def test_balance_line_only_for_partial_payment(self):
        assert "Balance Due" not in self._message()
        assert "Balance Due: $500.00" in self._message(balance_cents=50000)

    def test_invalid_due_date(self):
        with pytest.raises(ValueError):
            self._message(due_date="10/10/2026")


class TestTripAssignment:

    def test_required_fields(self):
        message = trip_assignment_message(
            driver_name="Sipho Dlamini",
            origin_city="Johannesburg",
            destination_city="Durban",
            scheduled_date="2026-10-21T06:00:00+00:00",
        )
        assert "Hello Sipho Dlamini!" in message
        assert "*Route:* Johannesburg to Durban" in message
        assert "*Scheduled Date:* Wednesday, October 21, 2026" in message
        assert "*Truck:*" not in message
        assert message.endswith("Please confirm receipt of this assignment.")

    def test_optional_fields(self):
        message = trip_assignment_message(
            driver_name="Sipho",
            origin_city="Johannesburg",
            destination_city="Durban",
            scheduled_date="2026-10-21",
            truck_registration="GP 123-456",
            customer_name="Karoo Farms",
            load_description="24 pallets maize",
        )
        assert "*Truck:* GP 123-456" in message
        assert "*Customer:* Karoo Farms" in message
        assert "*Load:* 24 pallets maize" in message


def test_daily_summary_message():
    message = daily_summary_message(
        "Acme Haulage",
        date(2026, 10, 20),
        {"trips_today": 3, "trips_in_progress": 1, "overdue_invoices": 2, "overdue_balance_cents": 250000},
    )
    assert message.splitlines()[0] == "*Daily Summary - Acme Haulage*"
    assert "Tuesday, October 20, 2026" in message
    assert "Trips scheduled today: 3" in message
    assert "Overdue invoices: 2 ($2,500.00 outstanding)" in message
