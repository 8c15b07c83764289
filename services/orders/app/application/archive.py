"""
Archival of finalized orders.

Orders that were moved to sales more than the retention window ago are
copied into ``order_archives`` and removed from the active table. The job
runs in two phases so a crash never loses or duplicates an order:

* mark: copy each candidate (once, keyed by ``source_order_id``) and stamp
  ``archive_marked_at`` on the original, in one transaction
* sweep: delete originals that are marked and have an archived copy

A run that dies after marking is finished by the next run's sweep.
"""
import calendar
import socket
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.models import JobLock, Order, OrderArchive, utcnow
from shared.core import get_logger
from .errors import PersistenceError

ARCHIVE_LOCK_NAME = "archive-orders"


def months_before(moment: datetime, months: int) -> datetime:
    """Same wall-clock time `months` calendar months earlier, clamped to month end."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass
class ArchiveResult:
    archived: int = 0
    deleted: int = 0
    locked_out: bool = False


class RunLock:
    """Table-backed mutual exclusion for batch jobs sharing one database."""

    def __init__(self, db: Session, name: str, ttl_seconds: int, owner: Optional[str] = None, logger=None):
        self.db = db
        self.name = name
        self.ttl = timedelta(seconds=ttl_seconds)
        self.owner = owner or f"{socket.gethostname()}:{uuid.uuid4().hex[:8]}"
        self.logger = logger or get_logger(__name__)

    def acquire(self) -> bool:
        now = utcnow()
        try:
            # take over a lock whose holder died without releasing it
            taken = self.db.execute(
                update(JobLock)
                .where(JobLock.name == self.name, JobLock.expires_at <= now)
                .values(owner=self.owner, acquired_at=now, expires_at=now + self.ttl)
                .execution_options(synchronize_session=False)
            ).rowcount
            if not taken:
                self.db.execute(insert(JobLock).values(
                    name=self.name, owner=self.owner, acquired_at=now, expires_at=now + self.ttl
                ))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            holder = self.db.get(JobLock, self.name)
            self.logger.info(
                "Job lock held by another run",
                extra={"extra_fields": {"lock": self.name, "holder": holder.owner if holder else None}}
            )
            return False
        return True

    def release(self) -> None:
        try:
            self.db.execute(
                delete(JobLock)
                .where(JobLock.name == self.name, JobLock.owner == self.owner)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.error("Releasing job lock failed", exc_info=True,
                              extra={"extra_fields": {"lock": self.name}})


def _snapshot(order: Order, archived_at: datetime) -> OrderArchive:
    return OrderArchive(
        source_order_id=order.id,
        user_id=order.user_id,
        shipping_address=order.shipping_address,
        customer_details=order.customer_details,
        items=[
            {
                "product_id": item.product_id,
                "name": item.name,
                "quantity": item.quantity,
                "price": str(item.price),
                "size": item.size,
                "image": item.image,
                "serial_number": item.serial_number,
            }
            for item in order.items
        ],
        payment_method=order.payment_method,
        shipping_method=order.shipping_method,
        items_price=order.items_price,
        shipping_price=order.shipping_price,
        total_price=order.total_price,
        stripe_session_id=order.stripe_session_id,
        is_paid=order.is_paid,
        paid_at=order.paid_at,
        is_delivered=order.is_delivered,
        delivered_at=order.delivered_at,
        is_moved_to_sales=order.is_moved_to_sales,
        moved_to_sales_at=order.moved_to_sales_at,
        order_created_at=order.created_at,
        archived_at=archived_at,
    )


class OrderArchiver:
    def __init__(
        self,
        db: Session,
        retention_months: int = 1,
        lock_ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
        logger=None,
    ):
        self.db = db
        self.retention_months = retention_months
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock
        self.logger = logger or get_logger(__name__)

    def threshold(self) -> datetime:
        return months_before(self.clock(), self.retention_months)

    def candidates(self) -> list[Order]:
        return list(self.db.scalars(
            select(Order)
            .where(
                Order.is_moved_to_sales.is_(True),
                Order.created_at < self.threshold(),
                Order.archive_marked_at.is_(None),
            )
            .order_by(Order.id)
        ))

    def run(self) -> ArchiveResult:
        lock = RunLock(self.db, ARCHIVE_LOCK_NAME, self.lock_ttl_seconds, logger=self.logger)
        if not lock.acquire():
            return ArchiveResult(locked_out=True)
        try:
            archived = self.mark()
            deleted = self.sweep()
        finally:
            lock.release()
        self.logger.info("Archive run finished",
                         extra={"extra_fields": {"archived": archived, "deleted": deleted}})
        return ArchiveResult(archived=archived, deleted=deleted)

    def mark(self) -> int:
        orders = self.candidates()
        if not orders:
            self.logger.info("No orders to archive")
            return 0
        now = self.clock()
        already = set(self.db.scalars(
            select(OrderArchive.source_order_id)
            .where(OrderArchive.source_order_id.in_([o.id for o in orders]))
        ))
        copied = 0
        try:
            for order in orders:
                if order.id not in already:
                    self.db.add(_snapshot(order, now))
                    copied += 1
                order.archive_marked_at = now
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Archiving orders failed", exc_info=True)
            raise PersistenceError(f"Archiving orders failed: {e}") from e
        self.logger.info(f"Archived {copied} orders", extra={"extra_fields": {"marked": len(orders)}})
        return copied

    def sweep(self) -> int:
        archived_ids = select(OrderArchive.source_order_id)
        orders = list(self.db.scalars(
            select(Order).where(Order.archive_marked_at.is_not(None), Order.id.in_(archived_ids))
        ))
        if not orders:
            return 0
        try:
            for order in orders:
                self.db.delete(order)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Deleting archived orders failed", exc_info=True)
            raise PersistenceError(f"Deleting archived orders failed: {e}") from e
        self.logger.info(f"Deleted {len(orders)} orders from active collection")
        return len(orders)
