from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import PersistenceError
from app.db.models import Product, ProductStatus


@dataclass(frozen=True)
class CatalogProduct:
    id: int
    name: str
    sku: str
    price_cents: int
    status: str

    @property
    def orderable(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value


class ProductCatalog(Protocol):
    def get_product_by_id(self, product_id: int) -> CatalogProduct | None: ...


class SqlProductCatalog:
    """Catalog lookup against the shared products table."""

    def __init__(self, db: Session):
        self.db = db

    def get_product_by_id(self, product_id: int) -> CatalogProduct | None:
        try:
            obj = self.db.get(Product, product_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Catalog lookup failed") from e
        if not obj:
            return None
        return CatalogProduct(
            id=obj.id,
            name=obj.name,
            sku=obj.sku,
            price_cents=obj.price_cents,
            status=obj.status,
        )
