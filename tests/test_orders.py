import random
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import order_payload
from marketplace.application.order_number import OrderNumberGenerator
from marketplace.domain.models import Address, Order, OrderItem, OrderStatus, PaymentStatus
from marketplace.errors import Conflict, InvalidInput, NotFound

USER = "user-u"


def count(db, model):
    return db.scalar(select(func.count()).select_from(model))


class TestOwnedOrders:
    def test_owned_user_order_scenario(self, db, order_service, configure_delivery, make_product, make_address):
        configure_delivery(enabled=True, fee="150", threshold="2000")
        product = make_product("P1", "100")
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER, order_payload([{"product_id": product.id, "quantity": 2}], address_id=address.id)
        )

        assert order.user_id == USER
        assert order.address_id == address.id
        assert order.subtotal == Decimal("200")
        assert order.delivery_fee == Decimal("150")
        assert order.discount == Decimal("0")
        assert order.total_amount == Decimal("350")
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.payment_method == "cash_on_delivery"
        assert len(order.items) == 1
        item = order.items[0]
        assert item.total_price == Decimal("200")
        assert item.unit_price == Decimal("100")
        assert item.item_name == "P1"
        assert item.item_image == "https://cdn.example.com/p1.jpg"
        assert item.unit == "kg"

    def test_address_of_another_user_is_not_found(self, db, order_service, configure_delivery,
                                                  make_product, make_address):
        configure_delivery()
        product = make_product()
        foreign = make_address("someone-else")

        with pytest.raises(NotFound):
            order_service.create_unified_order(
                USER, order_payload([{"product_id": product.id, "quantity": 1}], address_id=foreign.id)
            )
        assert count(db, Order) == 0

    def test_missing_address_id_is_not_found(self, order_service, configure_delivery, make_product):
        configure_delivery()
        product = make_product()
        with pytest.raises(NotFound):
            order_service.create_unified_order(USER, order_payload([{"product_id": product.id, "quantity": 1}]))


class TestGuestOrders:
    def test_guest_order_with_free_delivery(self, db, order_service, configure_delivery,
                                            make_product, guest_address):
        configure_delivery(enabled=True, fee="150", threshold="2000")
        product = make_product("Basmati Rice", "1250")

        order = order_service.create_unified_order(
            None, order_payload([{"product_id": product.id, "quantity": 2}], address=guest_address)
        )

        assert order.user_id is None
        assert order.subtotal == Decimal("2500")
        assert order.delivery_fee == Decimal("0")
        assert order.total_amount == Decimal("2500")
        assert order.address.user_id is None
        assert order.address.is_default is True
        assert order.address.state == "Punjab"
        assert order.address.country == "Pakistan"
        assert count(db, Address) == 1

    def test_guest_address_keeps_submitted_region(self, order_service, configure_delivery, make_product,
                                                  guest_address):
        configure_delivery()
        product = make_product()
        payload = guest_address.model_copy(update={"state": "Sindh", "country": "PK"})
        order = order_service.create_unified_order(
            None, order_payload([{"product_id": product.id, "quantity": 1}], address=payload)
        )
        assert order.address.state == "Sindh"
        assert order.address.country == "PK"

    def test_guest_without_address_is_invalid(self, db, order_service, configure_delivery, make_product):
        configure_delivery()
        product = make_product()
        with pytest.raises(InvalidInput):
            order_service.create_unified_order(None, order_payload([{"product_id": product.id, "quantity": 1}]))
        assert count(db, Order) == 0


class TestValidation:
    def test_unavailable_product_rolls_back_everything(self, db, order_service, configure_delivery,
                                                       make_product, guest_address):
        configure_delivery()
        available = make_product("Apples", "120")
        unavailable = make_product("Mangoes", "300", is_available=False)

        with pytest.raises(InvalidInput) as excinfo:
            order_service.create_unified_order(
                None,
                order_payload(
                    [
                        {"product_id": available.id, "quantity": 1},
                        {"product_id": unavailable.id, "quantity": 3},
                    ],
                    address=guest_address,
                ),
            )

        assert "Mangoes" in excinfo.value.message
        assert count(db, Order) == 0
        assert count(db, OrderItem) == 0
        assert count(db, Address) == 0

    def test_unknown_product_is_invalid(self, db, order_service, configure_delivery, make_product,
                                        make_address):
        configure_delivery()
        product = make_product()
        address = make_address(USER)
        with pytest.raises(InvalidInput, match="not found"):
            order_service.create_unified_order(
                USER,
                order_payload(
                    [
                        {"product_id": product.id, "quantity": 1},
                        {"product_id": "does-not-exist", "quantity": 1},
                    ],
                    address_id=address.id,
                ),
            )
        assert count(db, Order) == 0

    def test_non_positive_quantity_is_invalid(self, order_service, configure_delivery, make_product,
                                              make_address):
        configure_delivery()
        product = make_product()
        address = make_address(USER)
        payload = order_payload([{"product_id": product.id, "quantity": 1}], address_id=address.id)
        payload.items[0].quantity = 0
        with pytest.raises(InvalidInput):
            order_service.create_unified_order(USER, payload)


class TestPricing:
    def test_variant_price_from_catalog(self, order_service, configure_delivery, make_product, make_address):
        configure_delivery()
        product = make_product(
            "P2", "250", has_variants=True,
            variants=[{"name": "Large", "price": 300}, {"name": "Small", "price": 200}],
        )
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload([{"product_id": product.id, "quantity": 1, "selected_variant": "Large"}],
                          address_id=address.id),
        )

        item = order.items[0]
        assert item.unit_price == Decimal("300")
        assert item.item_name == "P2 - Large"
        assert item.selected_variant == "Large"

    def test_submitted_variant_price_is_used(self, order_service, configure_delivery, make_product,
                                             make_address):
        configure_delivery()
        product = make_product("P2", "250", has_variants=True, variants=[{"name": "Large", "price": 300}])
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload(
                [{"product_id": product.id, "quantity": 2, "selected_variant": "Large",
                  "variant_price": "280", "variant_original_price": "320"}],
                address_id=address.id,
            ),
        )

        item = order.items[0]
        assert item.unit_price == Decimal("280")
        assert item.total_price == Decimal("560")
        assert item.variant_price == Decimal("280")
        assert item.variant_original_price == Decimal("320")

    def test_catalog_only_pricing_ignores_submitted_price(self, order_service, configure_delivery,
                                                          make_product, make_address):
        configure_delivery()
        order_service.trust_client_variant_price = False
        product = make_product(
            "P2", "250", has_variants=True,
            variants=[{"name": "Large", "price": 300, "originalPrice": 350}],
        )
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload(
                [{"product_id": product.id, "quantity": 1, "selected_variant": "Large", "variant_price": "1"}],
                address_id=address.id,
            ),
        )

        item = order.items[0]
        assert item.unit_price == Decimal("300")
        assert item.variant_price == Decimal("300")
        assert item.variant_original_price == Decimal("350")

    def test_variant_metadata_is_kept_as_submitted(self, db, order_service, configure_delivery,
                                                   make_product, make_address):
        configure_delivery()
        product = make_product(
            "P2", "250", has_variants=True,
            variants=[{"name": "Large", "price": 300, "originalPrice": 350}],
        )
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload(
                [{"product_id": product.id, "quantity": 1, "selected_variant": "Large",
                  "variant_original_price": "400"}],
                address_id=address.id,
            ),
        )
        db.expire_all()

        item = order_service.get(order.id).items[0]
        assert item.unit_price == Decimal("300")
        assert item.variant_price is None
        assert item.variant_original_price == Decimal("400")

    def test_prices_are_rounded_to_cents_before_totalling(self, db, order_service, configure_delivery,
                                                          make_product, make_address):
        configure_delivery(threshold="100000")
        product = make_product(
            "P2", "250", has_variants=True, variants=[{"name": "Small", "price": "2.345"}],
        )
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload(
                [
                    {"product_id": product.id, "quantity": 3, "selected_variant": "Small",
                     "variant_price": "1.005"},
                    {"product_id": product.id, "quantity": 2, "selected_variant": "Small"},
                ],
                address_id=address.id,
            ),
        )
        db.expire_all()

        stored = order_service.get(order.id)
        by_qty = {item.quantity: item for item in stored.items}
        assert by_qty[3].unit_price == Decimal("1.01")
        assert by_qty[2].unit_price == Decimal("2.35")
        for item in stored.items:
            assert item.total_price == item.unit_price * item.quantity
        assert stored.subtotal == sum(item.total_price for item in stored.items)
        assert stored.total_amount == stored.subtotal + stored.delivery_fee - stored.discount

    def test_unknown_variant_falls_back_to_base_price(self, order_service, configure_delivery, make_product,
                                                      make_address):
        configure_delivery()
        product = make_product("P2", "250", has_variants=True, variants=[{"name": "Large", "price": 300}])
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload([{"product_id": product.id, "quantity": 1, "selected_variant": "Huge"}],
                          address_id=address.id),
        )

        assert order.items[0].unit_price == Decimal("250")
        assert order.items[0].item_name == "P2"

    def test_variant_ignored_when_product_has_no_variants(self, order_service, configure_delivery,
                                                          make_product, make_address):
        configure_delivery()
        product = make_product("P3", "90", has_variants=False, variants=[{"name": "Large", "price": 300}])
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload([{"product_id": product.id, "quantity": 1, "selected_variant": "Large"}],
                          address_id=address.id),
        )
        assert order.items[0].unit_price == Decimal("90")

    def test_every_line_becomes_an_item_and_totals_add_up(self, db, order_service, configure_delivery,
                                                          make_product, make_address):
        configure_delivery(threshold="100000")
        onions = make_product("Onions", "45.50")
        garlic = make_product("Garlic", "12.25", images=[])
        address = make_address(USER)

        order = order_service.create_unified_order(
            USER,
            order_payload(
                [
                    {"product_id": onions.id, "quantity": 3},
                    {"product_id": garlic.id, "quantity": 4},
                    {"product_id": onions.id, "quantity": 1},
                ],
                address_id=address.id,
            ),
        )

        assert count(db, OrderItem) == 3
        for item in order.items:
            assert item.total_price == item.unit_price * item.quantity
        assert order.subtotal == Decimal("231.00")
        assert order.total_amount == order.subtotal + order.delivery_fee - order.discount
        assert {item.item_image for item in order.items if item.item_name == "Garlic"} == {""}


class TestConflicts:
    def test_duplicate_order_number_surfaces_as_conflict(self, db, order_service, configure_delivery,
                                                         make_product, make_address):
        configure_delivery()
        product = make_product()
        address = make_address(USER)
        first = order_service.create_unified_order(
            USER, order_payload([{"product_id": product.id, "quantity": 1}], address_id=address.id)
        )

        order_service.order_numbers.next = lambda uow: first.order_number
        with pytest.raises(Conflict):
            order_service.create_unified_order(
                USER, order_payload([{"product_id": product.id, "quantity": 1}], address_id=address.id)
            )

        assert count(db, Order) == 1
        assert count(db, OrderItem) == 1

    def test_exhausted_order_numbers_leave_no_rows(self, db, order_service, configure_delivery,
                                                   make_product, guest_address):
        configure_delivery()
        product = make_product()

        class Fixed(random.Random):
            def randint(self, a, b):
                return 7

        order_service.order_numbers = OrderNumberGenerator(max_attempts=2, rng=Fixed())
        order_service.create_unified_order(
            None, order_payload([{"product_id": product.id, "quantity": 1}], address=guest_address)
        )
        with pytest.raises(Conflict):
            order_service.create_unified_order(
                None, order_payload([{"product_id": product.id, "quantity": 1}], address=guest_address)
            )

        assert count(db, Order) == 1
        assert count(db, Address) == 1
