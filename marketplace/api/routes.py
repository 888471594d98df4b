from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from marketplace.infrastructure.db import get_db
from marketplace.infrastructure.cache import SettingsCache, get_settings_cache
from marketplace.application.service import OrderService
from marketplace.application.addresses import AddressService
from marketplace.application.settings_service import SettingsService
from marketplace.application.schemas import (
    AddressCreate, AddressRead, AddressUpdate, DashboardStats, DeliveryQuoteRead,
    DeliverySettingsRead, DeliverySettingsUpdate, OrderCancel, OrderCreate, OrderPage,
    OrderRead, OrderUpdate,
)
from marketplace.domain.models import OrderStatus, PaymentStatus
from .auth import optional_user_id, require_user_id

router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin-orders"], dependencies=[Depends(require_user_id)])
settings_router = APIRouter(prefix="/settings", tags=["settings"])

def get_order_service(db: Session = Depends(get_db), cache: SettingsCache = Depends(get_settings_cache)) -> OrderService:
    return OrderService(db, cache)

def get_settings_service(db: Session = Depends(get_db), cache: SettingsCache = Depends(get_settings_cache)) -> SettingsService:
    return SettingsService(db, cache)

@router.post("/", response_model=OrderRead, status_code=201)
def create_order(payload: OrderCreate, user_id: Optional[str] = Depends(optional_user_id),
                 service: OrderService = Depends(get_order_service)):
    """Place an order; signed-in users pass address_id, guests pass address."""
    return service.create_unified_order(user_id, payload)

@router.get("/", response_model=OrderPage)
def list_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                status: Optional[OrderStatus] = None, user_id: str = Depends(require_user_id),
                service: OrderService = Depends(get_order_service)):
    return service.list_for_user(user_id, page, limit, status)

# Address routes must come before the generic /{order_id} route
@router.get("/addresses", response_model=list[AddressRead])
def list_addresses(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    return AddressService(db).list(user_id)

@router.post("/addresses", response_model=AddressRead, status_code=201)
def create_address(payload: AddressCreate, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    return AddressService(db).create(user_id, payload)

@router.patch("/addresses/{address_id}", response_model=AddressRead)
def update_address(address_id: str, payload: AddressUpdate, user_id: str = Depends(require_user_id),
                   db: Session = Depends(get_db)):
    return AddressService(db).update(address_id, user_id, payload)

@router.delete("/addresses/{address_id}", status_code=204)
def delete_address(address_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    AddressService(db).delete(address_id, user_id)
    return None

@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: str, user_id: str = Depends(require_user_id),
              service: OrderService = Depends(get_order_service)):
    return service.get(order_id, user_id)

@router.patch("/{order_id}", response_model=OrderRead)
def update_order(order_id: str, payload: OrderUpdate, user_id: str = Depends(require_user_id),
                 service: OrderService = Depends(get_order_service)):
    return service.update(order_id, payload, user_id)

@router.patch("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(order_id: str, payload: OrderCancel, user_id: str = Depends(require_user_id),
                 service: OrderService = Depends(get_order_service)):
    return service.cancel(order_id, payload.reason, user_id)

@admin_router.get("/", response_model=OrderPage)
def list_all_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    status: Optional[OrderStatus] = None, payment_status: Optional[PaymentStatus] = None,
                    service: OrderService = Depends(get_order_service)):
    return service.list_all(page, limit, status, payment_status)

@admin_router.get("/stats", response_model=DashboardStats)
def dashboard_stats(service: OrderService = Depends(get_order_service)):
    return service.dashboard_stats()

@admin_router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(order_id: str, payload: OrderUpdate, service: OrderService = Depends(get_order_service)):
    return service.update(order_id, payload)

@settings_router.get("/delivery", response_model=DeliverySettingsRead)
def get_delivery_settings(service: SettingsService = Depends(get_settings_service)):
    return service.get_delivery_settings()

@settings_router.put("/delivery", response_model=DeliverySettingsRead, dependencies=[Depends(require_user_id)])
def update_delivery_settings(payload: DeliverySettingsUpdate, service: SettingsService = Depends(get_settings_service)):
    return service.update_delivery_settings(
        payload.is_delivery_enabled, payload.delivery_fee, payload.free_delivery_threshold
    )

@settings_router.get("/delivery/calculate", response_model=DeliveryQuoteRead)
def calculate_delivery(subtotal: Decimal = Query(..., ge=0), service: SettingsService = Depends(get_settings_service)):
    return service.quote_delivery(subtotal)
