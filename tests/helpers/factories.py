"""Row builders for the back-office tables the workflows read."""

from sqlalchemy.orm import Session

from fleetwire.db.models import (
    Customer,
    Driver,
    Invoice,
    InvoiceStatus,
    Organization,
    Trip,
    TripStatus,
)


def _save(db: Session, row):
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def make_organization(
    db: Session,
    id: str = "acme",
    name: str = "Acme Haulage",
    operator_phone: str | None = "+27 82 555 0100",
) -> Organization:
    return _save(db, Organization(id=id, name=name, operator_phone=operator_phone))


def make_customer(
    db: Session,
    organization: Organization,
    name: str = "Karoo Farms",
    phone: str | None = "27821110001",
) -> Customer:
    return _save(db, Customer(organization_id=organization.id, name=name, phone=phone))


def make_driver(
    db: Session,
    organization: Organization,
    first_name: str = "Sipho",
    last_name: str = "Dlamini",
    phone: str | None = "27823330003",
) -> Driver:
    return _save(
        db,
        Driver(organization_id=organization.id, first_name=first_name, last_name=last_name, phone=phone),
    )


def make_invoice(
    db: Session,
    customer: Customer,
    invoice_number: str = "INV-1001",
    total_cents: int = 125000,
    balance_cents: int | None = None,
    status: str = InvoiceStatus.sent.value,
    due_date: str = "2026-10-10",
    **fields,
) -> Invoice:
    return _save(
        db,
        Invoice(
            organization_id=customer.organization_id,
            customer_id=customer.id,
            invoice_number=invoice_number,
            total_cents=total_cents,
            balance_cents=total_cents if balance_cents is None else balance_cents,
            status=status,
            due_date=due_date,
            **fields,
        ),
    )


def make_trip(
    db: Session,
    organization: Organization,
    driver: Driver | None,
    scheduled_date: str = "2026-10-21T06:00:00+00:00",
    status: str = TripStatus.scheduled.value,
    origin_city: str = "Johannesburg",
    destination_city: str = "Durban",
    **fields,
) -> Trip:
    return _save(
        db,
        Trip(
            organization_id=organization.id,
            driver_id=driver.id if driver else None,
            origin_city=origin_city,
            destination_city=destination_city,
            scheduled_date=scheduled_date,
            status=status,
            **fields,
        ),
    )
