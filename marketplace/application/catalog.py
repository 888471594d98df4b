from sqlalchemy import select, func
from sqlalchemy.orm import Session, selectinload
from typing import Iterable, Optional
from marketplace.domain.models import Product

class CatalogService:
    """Read-only product lookups used while placing orders."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_ids(self, ids: Iterable[str]) -> list[Product]:
        ids = list(ids)
        if not ids:
            return []
        stmt = (
            select(Product)
            .where(Product.id.in_(ids))
            .options(selectinload(Product.category), selectinload(Product.product_type))
        )
        return list(self.db.scalars(stmt).all())

    def count_available(self) -> int:
        return self.db.scalar(select(func.count()).select_from(Product).where(Product.is_available.is_(True)))

def find_variant(product: Product, name: Optional[str]) -> Optional[dict]:
    """Variant of ``product`` whose name matches exactly, if the product has variants."""
    if not name or not product.has_variants or not product.variants:
        return None
    for variant in product.variants:
        if variant.get("name") == name:
            return variant
    return None
