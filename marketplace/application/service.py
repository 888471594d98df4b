import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from marketplace.domain.models import Order, OrderItem, OrderStatus, PaymentStatus, Product
from marketplace.errors import NotFound, InvalidInput, InvalidState, Conflict
from marketplace.infrastructure.cache import SettingsCache
from marketplace.infrastructure.db import UnitOfWork
from marketplace.core_settings import get_settings
from marketplace.core.logging_config import get_logger
from .addresses import address_resolver_for
from .catalog import CatalogService, find_variant
from .delivery import calculate_delivery_fee
from .order_number import OrderNumberGenerator
from .schemas import OrderCreate, OrderItemCreate, OrderUpdate
from .settings_service import SettingsService

logger = get_logger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")

# Forward progress only; CANCELLED and REFUNDED are side exits
FULFILMENT_CHAIN = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]
TERMINAL_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

def to_cents(amount: Decimal) -> Decimal:
    """Quantize to the 2 decimal places money columns store."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

def check_transition(current: OrderStatus, new: OrderStatus) -> None:
    """Raise ``InvalidState`` unless ``current -> new`` is an allowed move."""
    if current in TERMINAL_STATUSES:
        raise InvalidState("Cannot update completed or cancelled order")
    if new == current or new in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        return
    if current == OrderStatus.REFUNDED:
        raise InvalidState(f"Cannot move a refunded order to {new.value}")
    if FULFILMENT_CHAIN.index(new) < FULFILMENT_CHAIN.index(current):
        raise InvalidState(f"Cannot move order from {current.value} back to {new.value}")

class OrderService:
    def __init__(self, db: Session, settings_cache: SettingsCache):
        self.db = db
        self.settings_cache = settings_cache
        config = get_settings()
        self.currency = config.CURRENCY_SYMBOL
        self.trust_client_variant_price = config.TRUST_CLIENT_VARIANT_PRICE
        self.order_numbers = OrderNumberGenerator(max_attempts=config.ORDER_NUMBER_ATTEMPTS)

    # Order placement

    def create_unified_order(self, user_id: Optional[str], data: OrderCreate) -> Order:
        """Place an order for a signed-in user (``address_id``) or a guest (``address``).

        Address, products, pricing, delivery fee and order number are all
        resolved inside one unit of work; nothing is persisted unless every
        step succeeds.
        """
        resolver = address_resolver_for(user_id, data.address_id, data.address)

        with UnitOfWork(self.db, "create_order") as uow:
            self._validate_lines(data.items)
            address = resolver.resolve(uow)
            products = self._load_products(uow, data.items)

            subtotal = ZERO
            items: list[OrderItem] = []
            for line in data.items:
                item = self._snapshot_line(line, products[line.product_id])
                subtotal += item.total_price
                items.append(item)

            delivery_settings = SettingsService(uow.session, self.settings_cache).get_delivery_settings()
            quote = calculate_delivery_fee(subtotal, delivery_settings, currency=self.currency)
            order_number = self.order_numbers.next(uow)
            discount = ZERO

            order = Order(
                order_number=order_number,
                user_id=user_id or None,
                address=address,
                subtotal=subtotal,
                delivery_fee=quote.fee,
                discount=discount,
                total_amount=subtotal + quote.fee - discount,
                payment_method=data.payment_method.value,
                payment_status=PaymentStatus.PENDING.value,
                status=OrderStatus.PENDING.value,
                notes=data.notes,
            )
            uow.add(order)
            self._flush(uow)

            order.items.extend(items)
            self._flush(uow)
            order_id = order.id

        logger.info(
            f"Order created: {order_number}",
            extra={'extra_fields': {
                'order_id': order_id,
                'order_number': order_number,
                'guest': user_id is None,
                'items': len(items),
                'subtotal': str(subtotal),
                'delivery_fee': str(quote.fee),
                'free_delivery': quote.is_free,
            }}
        )
        return self.get(order_id)

    def _validate_lines(self, lines: list[OrderItemCreate]) -> None:
        if not lines:
            raise InvalidInput("Order must contain at least one item")
        for line in lines:
            if line.quantity is None or line.quantity <= 0:
                raise InvalidInput(f"Quantity for product {line.product_id} must be positive")

    def _load_products(self, uow: UnitOfWork, lines: list[OrderItemCreate]) -> dict[str, Product]:
        unique_ids = list(dict.fromkeys(line.product_id for line in lines))
        products = {p.id: p for p in CatalogService(uow.session).find_by_ids(unique_ids)}
        if len(products) != len(unique_ids):
            raise InvalidInput("One or more products not found")
        for product_id in unique_ids:
            product = products[product_id]
            if not product.is_available:
                raise InvalidInput(f"Product {product.name} is not available")
        return products

    def _snapshot_line(self, line: OrderItemCreate, product: Product) -> OrderItem:
        unit_price = Decimal(str(product.price))
        item_name = product.name
        variant_price = line.variant_price
        variant_original_price = line.variant_original_price

        variant = find_variant(product, line.selected_variant)
        if variant is not None:
            catalog_price = Decimal(str(variant["price"]))
            if self.trust_client_variant_price:
                # Variant metadata is stored as submitted
                unit_price = line.variant_price if line.variant_price is not None else catalog_price
            else:
                if line.variant_price is not None and line.variant_price != catalog_price:
                    logger.warning(
                        f"Ignoring client variant price for {product.id}",
                        extra={'extra_fields': {
                            'variant': variant["name"],
                            'submitted': str(line.variant_price),
                            'catalog': str(catalog_price),
                        }}
                    )
                unit_price = catalog_price
                variant_price = catalog_price
                original = variant.get("originalPrice")
                variant_original_price = Decimal(str(original)) if original is not None else None
            item_name = f"{product.name} - {variant['name']}"

        unit_price = to_cents(unit_price)
        return OrderItem(
            product_id=product.id,
            item_name=item_name,
            item_image=product.images[0] if product.images else "",
            unit_price=unit_price,
            quantity=line.quantity,
            total_price=unit_price * line.quantity,
            unit=product.unit,
            specifications=product.specifications,
            selected_variant=line.selected_variant,
            variant_price=variant_price,
            variant_original_price=variant_original_price,
        )

    def _flush(self, uow: UnitOfWork) -> None:
        try:
            uow.flush()
        except IntegrityError as exc:
            logger.warning(f"Order persistence conflict: {exc.orig}")
            raise Conflict("Order conflicts with an existing record, please retry") from exc

    # Queries

    def _query(self):
        return select(Order).options(selectinload(Order.items), selectinload(Order.address))

    def get(self, order_id: str, user_id: Optional[str] = None) -> Order:
        """Order with address and items; ``user_id`` restricts to that owner."""
        order = self.db.scalars(self._query().where(Order.id == order_id)).first()
        if order is None or (user_id is not None and order.user_id != user_id):
            raise NotFound("Order not found")
        return order

    def _page(self, criteria: list, page: int, limit: int) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = self.db.scalar(select(func.count()).select_from(Order).where(*criteria))
        orders = self.db.scalars(
            self._query().where(*criteria)
            .order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit)
        ).all()
        return {"orders": list(orders), "total": total, "total_pages": math.ceil(total / limit)}

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 10,
                      status: Optional[OrderStatus] = None) -> dict:
        criteria = [Order.user_id == user_id]
        if status:
            criteria.append(Order.status == status.value)
        return self._page(criteria, page, limit)

    def list_all(self, page: int = 1, limit: int = 10, status: Optional[OrderStatus] = None,
                 payment_status: Optional[PaymentStatus] = None) -> dict:
        criteria = []
        if status:
            criteria.append(Order.status == status.value)
        if payment_status:
            criteria.append(Order.payment_status == payment_status.value)
        return self._page(criteria, page, limit)

    # Lifecycle

    def update(self, order_id: str, data: OrderUpdate, user_id: Optional[str] = None) -> Order:
        changes = data.model_dump(exclude_unset=True)
        with UnitOfWork(self.db, "update_order"):
            order = self.get(order_id, user_id)
            current = OrderStatus(order.status)
            if current in TERMINAL_STATUSES:
                raise InvalidState("Cannot update completed or cancelled order")

            new_status = changes.pop("status", None)
            if new_status is not None:
                new_status = OrderStatus(new_status)
                check_transition(current, new_status)
                order.status = new_status.value
                if new_status == OrderStatus.DELIVERED:
                    order.delivered_at = changes.pop("delivered_at", None) or _utcnow()
                elif new_status == OrderStatus.CANCELLED:
                    order.cancelled_at = _utcnow()

            payment_status = changes.pop("payment_status", None)
            if payment_status is not None:
                order.payment_status = PaymentStatus(payment_status).value

            for field, value in changes.items():
                setattr(order, field, value)

        logger.info(
            f"Order updated: {order.order_number}",
            extra={'extra_fields': {'order_id': order.id, 'status': order.status, 'fields': sorted(data.model_fields_set)}}
        )
        return order

    def cancel(self, order_id: str, reason: Optional[str] = None, user_id: Optional[str] = None) -> Order:
        with UnitOfWork(self.db, "cancel_order"):
            order = self.get(order_id, user_id)
            if OrderStatus(order.status) in TERMINAL_STATUSES:
                raise InvalidState("Cannot cancel completed or already cancelled order")
            order.status = OrderStatus.CANCELLED.value
            order.cancelled_at = _utcnow()
            order.cancellation_reason = reason

        logger.info(f"Order cancelled: {order.order_number}", extra={'extra_fields': {'order_id': order.id}})
        return order

    # Reporting

    def dashboard_stats(self) -> dict:
        def count(*criteria) -> int:
            return self.db.scalar(select(func.count()).select_from(Order).where(*criteria))

        revenue = self.db.scalar(
            select(func.coalesce(func.sum(Order.total_amount), 0))
            .where(Order.status == OrderStatus.DELIVERED.value)
        )
        recent = self.db.scalars(select(Order).order_by(Order.created_at.desc()).limit(5)).all()
        return {
            "total_orders": count(),
            "total_revenue": Decimal(str(revenue or 0)),
            "pending_orders": count(Order.status == OrderStatus.PENDING.value),
            "completed_orders": count(Order.status == OrderStatus.DELIVERED.value),
            "total_products": CatalogService(self.db).count_available(),
            "recent_orders": list(recent),
        }
