"""Customer lookup and creation for inbound email senders.

A customer is identified by the address they write from. The first email
from an unseen address creates a customer whose company name is guessed from
the mail domain and whose contact person is read from the sign-off.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
import threading
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import Customer

logger = logging.getLogger(__name__)

_SIGN_OFF = re.compile(
    r"(?:thanks,|regards,|best,|from,)\s*([a-z]+(?:[ \t]+[a-z]+)?)", re.IGNORECASE
)


def normalise_email(email: str) -> str:
    return email.strip().lower()


def derive_company_name(email: str) -> str:
    """``jane@acme.com`` -> ``Acme Corp``."""

    _, _, domain = email.partition("@")
    if not domain or "." not in domain:
        return "Unknown Company"
    label = domain.split(".", 1)[0]
    return f"{label[:1].upper()}{label[1:].lower()} Corp"


def extract_contact_person(body: str | None) -> str | None:
    """Return the name following a sign-off such as ``Regards,``."""

    if not body:
        return None
    match = _SIGN_OFF.search(body)
    if not match:
        return None
    return " ".join(part.capitalize() for part in match.group(1).split())


def build_customer(email: str, body: str | None) -> Customer:
    address = normalise_email(email)
    contact = extract_contact_person(body) or (address.partition("@")[0] or "Unknown")
    now = dt.datetime.now(dt.timezone.utc)
    return Customer(
        email=address,
        company_name=derive_company_name(address),
        contact_person=contact,
        address="Not provided",
        country="Unknown",
        created_at=now,
        updated_at=now,
    )


class CustomerRepository(Protocol):
    def count(self) -> int: ...

    def get_by_email(self, email: str) -> Customer | None: ...

    def add(self, customer: Customer) -> Customer: ...


class InMemoryCustomerRepository:
    """Dictionary-backed repository used by tests and local experiments."""

    def __init__(self) -> None:
        self._by_email: dict[str, Customer] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def count(self) -> int:
        return len(self._by_email)

    def get_by_email(self, email: str) -> Customer | None:
        return self._by_email.get(normalise_email(email))

    def add(self, customer: Customer) -> Customer:
        with self._lock:
            existing = self._by_email.get(customer.email)
            if existing is not None:
                return existing
            customer.id = self._next_id
            self._next_id += 1
            self._by_email[customer.email] = customer
            return customer


class SqlCustomerRepository:
    """SQLAlchemy implementation of :class:`CustomerRepository`."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def count(self) -> int:
        return int(self._session.scalar(select(func.count()).select_from(Customer)) or 0)

    def get_by_email(self, email: str) -> Customer | None:
        stmt = select(Customer).where(Customer.email == normalise_email(email))
        return self._session.scalars(stmt).first()

    def add(self, customer: Customer) -> Customer:
        try:
            with self._session.begin_nested():
                self._session.add(customer)
        except IntegrityError:
            # Another request created the same address first.
            existing = self.get_by_email(customer.email)
            if existing is None:
                raise
            return existing
        return customer


class CustomerService:
    def __init__(self, repository: CustomerRepository) -> None:
        self._repository = repository

    def find_or_create(self, email: str, body: str | None = None) -> Customer:
        existing = self._repository.get_by_email(email)
        if existing is not None:
            return existing
        customer = self._repository.add(build_customer(email, body))
        logger.info(
            "Created customer %s (%s) for a new sender", customer.id, customer.company_name
        )
        return customer

    def count(self) -> int:
        return self._repository.count()


__all__ = [
    "CustomerRepository",
    "CustomerService",
    "InMemoryCustomerRepository",
    "SqlCustomerRepository",
    "build_customer",
    "derive_company_name",
    "extract_contact_person",
]
