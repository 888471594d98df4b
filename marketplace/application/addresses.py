"""Delivery address resolution for order placement, plus the user address book."""

from typing import Optional, Protocol
from sqlalchemy import select, update, exists
from sqlalchemy.orm import Session
from marketplace.domain.models import Address, AddressType, Order
from marketplace.errors import NotFound, InvalidInput, InvalidState
from marketplace.infrastructure.db import UnitOfWork
from marketplace.core_settings import get_settings
from marketplace.core.logging_config import get_logger
from .schemas import AddressCreate, AddressUpdate

logger = get_logger(__name__)

def build_address(data: AddressCreate, user_id: Optional[str], is_default: bool) -> Address:
    """New ``Address`` row with the regional defaults applied."""
    settings = get_settings()
    return Address(
        user_id=user_id,
        full_name=data.full_name,
        phone=data.phone,
        address_line1=data.address_line1,
        address_line2=data.address_line2,
        city=data.city,
        state=data.state or settings.DEFAULT_STATE,
        postal_code=data.postal_code,
        country=data.country or settings.DEFAULT_COUNTRY,
        type=(data.type or AddressType.HOME).value,
        is_default=is_default,
        instructions=data.instructions,
    )

class AddressResolver(Protocol):
    def resolve(self, uow: UnitOfWork) -> Address: ...

class OwnedAddressResolver:
    """An existing address that must belong to the ordering user."""

    def __init__(self, user_id: str, address_id: Optional[str]):
        self.user_id = user_id
        self.address_id = address_id

    def resolve(self, uow: UnitOfWork) -> Address:
        address = None
        if self.address_id:
            address = uow.session.scalars(
                select(Address).where(Address.id == self.address_id, Address.user_id == self.user_id)
            ).first()
        if address is None:
            raise NotFound("Address not found or does not belong to user")
        return address

class GuestAddressResolver:
    """A fresh unowned address built from the submitted payload."""

    def __init__(self, payload: Optional[AddressCreate]):
        self.payload = payload

    def resolve(self, uow: UnitOfWork) -> Address:
        if self.payload is None:
            raise InvalidInput("Address information is required for guest orders")
        # Guest addresses are never linked to an account
        address = build_address(self.payload, user_id=None, is_default=True)
        uow.add(address)
        uow.flush()
        logger.info("Guest address created", extra={'extra_fields': {'address_id': address.id}})
        return address

def address_resolver_for(user_id: Optional[str], address_id: Optional[str],
                         payload: Optional[AddressCreate]) -> AddressResolver:
    if user_id:
        return OwnedAddressResolver(user_id, address_id)
    return GuestAddressResolver(payload)

class AddressService:
    def __init__(self, db: Session):
        self.db = db

    def _get_owned(self, address_id: str, user_id: str) -> Address:
        address = self.db.scalars(
            select(Address).where(Address.id == address_id, Address.user_id == user_id)
        ).first()
        if address is None:
            raise NotFound("Address not found")
        return address

    def _unset_defaults(self, user_id: str):
        self.db.execute(
            update(Address)
            .where(Address.user_id == user_id, Address.is_default.is_(True))
            .values(is_default=False)
        )

    def list(self, user_id: str) -> list[Address]:
        return list(self.db.scalars(
            select(Address)
            .where(Address.user_id == user_id)
            .order_by(Address.is_default.desc(), Address.created_at.desc())
        ).all())

    def create(self, user_id: str, data: AddressCreate) -> Address:
        with UnitOfWork(self.db, "create_address") as uow:
            if data.is_default:
                self._unset_defaults(user_id)
            address = build_address(data, user_id=user_id, is_default=data.is_default)
            uow.add(address)
        self.db.refresh(address)
        return address

    def update(self, address_id: str, user_id: str, data: AddressUpdate) -> Address:
        with UnitOfWork(self.db, "update_address"):
            address = self._get_owned(address_id, user_id)
            changes = data.model_dump(exclude_unset=True)
            if changes.get("is_default"):
                self._unset_defaults(user_id)
            for field, value in changes.items():
                if value is None and field not in ("address_line2", "instructions"):
                    continue
                if field == "type":
                    value = AddressType(value).value
                setattr(address, field, value)
        self.db.refresh(address)
        return address

    def delete(self, address_id: str, user_id: str) -> None:
        with UnitOfWork(self.db, "delete_address"):
            address = self._get_owned(address_id, user_id)
            referenced = self.db.scalar(select(exists().where(Order.address_id == address.id)))
            if referenced:
                raise InvalidState("Address is used by an order and cannot be deleted")
            self.db.delete(address)
