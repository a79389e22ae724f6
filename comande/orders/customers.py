# comande/orders/customers.py
from __future__ import annotations

import logging
from typing import Optional

from sqlmodel import Session, select

from ..models import Customer, CustomerAddress

log = logging.getLogger("comande.customers")


def _norm(address: str) -> str:
    return " ".join(address.lower().split())


class CustomerDirectory:
    """Rubrica clienti per le consegne: cliente per (ristorante, telefono) + indirizzi."""

    def resolve(self, tx: Session, restaurant_id: int, phone: str, name: Optional[str] = None) -> Customer:
        phone = phone.strip()
        customer = tx.exec(
            select(Customer).where(Customer.restaurant_id == restaurant_id, Customer.phone == phone)
        ).first()
        if customer:
            if name and not customer.name:
                customer.name = name
                tx.add(customer)
            return customer

        customer = Customer(restaurant_id=restaurant_id, phone=phone, name=name)
        tx.add(customer)
        tx.flush()
        log.info("nuovo cliente %s (%s)", customer.id, phone)
        return customer

    def remember_address(self, tx: Session, customer_id: int, address: str, label: str = "Casa") -> CustomerAddress:
        known = tx.exec(select(CustomerAddress).where(CustomerAddress.customer_id == customer_id)).all()
        for a in known:
            if _norm(a.full_address) == _norm(address):
                return a
        entry = CustomerAddress(
            customer_id=customer_id,
            label=label,
            full_address=address.strip(),
            is_default=not known,  # il primo indirizzo diventa il default
        )
        tx.add(entry)
        tx.flush()
        return entry
