"""Delivery fee calculation.

Pure: the caller supplies the settings snapshot it read during the same
operation, so a quote never mixes values from different settings versions.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

ZERO = Decimal("0")

@dataclass(frozen=True)
class DeliverySettings:
    # None means the key is not configured
    is_delivery_enabled: Optional[bool] = None
    delivery_fee: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None

@dataclass(frozen=True)
class DeliveryQuote:
    fee: Decimal
    is_free: bool
    reason: str

def _money(value: Decimal, currency: str) -> str:
    return f"{currency}{value:.2f}"

def calculate_delivery_fee(subtotal: Decimal, settings: DeliverySettings, currency: str = "Rs") -> DeliveryQuote:
    if not settings.is_delivery_enabled:
        return DeliveryQuote(fee=ZERO, is_free=True, reason="Delivery is disabled")

    threshold = settings.free_delivery_threshold
    if threshold is not None and subtotal >= threshold:
        return DeliveryQuote(
            fee=ZERO,
            is_free=True,
            reason=(
                f"Order amount ({_money(subtotal, currency)}) meets free delivery "
                f"threshold ({_money(threshold, currency)})"
            ),
        )

    fee = settings.delivery_fee if settings.delivery_fee is not None else ZERO
    if threshold is None:
        reason = "Standard delivery fee applies"
    else:
        reason = (
            f"Add {_money(threshold - subtotal, currency)} more to qualify for free delivery "
            f"(threshold {_money(threshold, currency)})"
        )
    return DeliveryQuote(fee=fee, is_free=False, reason=reason)
