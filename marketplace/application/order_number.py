import random
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, exists
from marketplace.domain.models import Order
from marketplace.errors import Conflict
from marketplace.infrastructure.db import UnitOfWork
from marketplace.core.logging_config import get_logger

logger = get_logger(__name__)

def generate_order_number(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """Order number in format ORD-YYYYMMDD-NNNN (UTC date, random suffix)"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    suffix = (rng or random).randint(0, 9999)
    return f"ORD-{now:%Y%m%d}-{suffix:04d}"

class OrderNumberGenerator:
    """Draws order numbers that are not yet taken in the current transaction's view.

    Two concurrent transactions can still draw the same number; the unique
    constraint catches that at flush and the caller sees ``Conflict``.
    """

    def __init__(self, max_attempts: int = 5, rng: Optional[random.Random] = None):
        self.max_attempts = max_attempts
        self.rng = rng

    def next(self, uow: UnitOfWork) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = generate_order_number(rng=self.rng)
            taken = uow.session.scalar(select(exists().where(Order.order_number == candidate)))
            if not taken:
                return candidate
            logger.warning(f"Order number collision on attempt {attempt}: {candidate}")
        raise Conflict("Could not allocate a unique order number, please retry")
