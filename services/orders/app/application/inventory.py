from typing import Iterable, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.domain.models import Product
from shared.core import get_logger
from .errors import InsufficientStockError

StockLine = Tuple[int, int]  # (product_id, quantity)


class InventoryLedger:
    """
    Stock adjustments for the order workflow.

    Every change is a single conditional UPDATE, so two checkouts racing for
    the last unit cannot both win. The ledger never commits: the caller owns
    the transaction.
    """

    def __init__(self, db: Session, logger=None):
        self.db = db
        self.logger = logger or get_logger(__name__)

    def reserve(self, lines: Iterable[StockLine]) -> None:
        taken: list[StockLine] = []
        for product_id, quantity in lines:
            result = self.db.execute(
                update(Product)
                .where(Product.id == product_id, Product.count_in_stock >= quantity)
                .values(count_in_stock=Product.count_in_stock - quantity)
            )
            if result.rowcount != 1:
                self.restock(taken)
                self.logger.warning(
                    "Stock reservation failed",
                    extra={"extra_fields": {"product_id": product_id, "quantity": quantity}}
                )
                raise InsufficientStockError(f"Insufficient stock for product {product_id}")
            taken.append((product_id, quantity))

    def restock(self, lines: Iterable[StockLine]) -> None:
        for product_id, quantity in lines:
            result = self.db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(count_in_stock=Product.count_in_stock + quantity)
            )
            if result.rowcount != 1:
                self.logger.warning(
                    "Restock skipped, product no longer exists",
                    extra={"extra_fields": {"product_id": product_id, "quantity": quantity}}
                )
