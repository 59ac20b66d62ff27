"""Test helpers for Fleetwire."""

from tests.helpers.factories import make_customer, make_driver, make_invoice, make_organization, make_trip
from tests.helpers.fake_transport import FakeTransport, FakeTransportFactory, connect

__all__ = [
    "FakeTransport",
    "FakeTransportFactory",
    "connect",
    "make_customer",
    "make_driver",
    "make_invoice",
    "make_organization",
    "make_trip",
]
