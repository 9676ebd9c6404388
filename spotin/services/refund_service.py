from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotin.config import settings
from spotin.models import (
    LineItemStatus,
    Product,
    ProductIngredient,
    Receipt,
    ReceiptStatus,
    SessionLineItem,
    StockItem,
)
from spotin.services.errors import NotFoundError, ValidationError
from spotin.services.steps import committed_step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundResult:
    receipt: Receipt
    restocked: dict[int, Decimal]
    cancelled_line_items: int


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _snapshot_name(line: dict) -> str:
    return str(line.get('name') or line.get('item_name') or '').strip()


def get_receipt(db: Session, *, receipt_id: int) -> Receipt:
    receipt = db.execute(select(Receipt).where(Receipt.id == receipt_id)).scalar_one_or_none()
    if not receipt:
        raise NotFoundError('Receipt not found')
    return receipt


def restock_receipt_lines(db: Session, lines: list[dict]) -> dict[int, Decimal]:
    """Put the ingredients of every product on the receipt back into stock."""
    restored: dict[int, Decimal] = {}
    for line in lines:
        name = _snapshot_name(line)
        quantity = Decimal(str(line.get('quantity') or 0))
        if not name or quantity <= 0:
            continue
        product_id = db.execute(
            select(Product.id).where(Product.name == name, Product.is_active.is_(True))
        ).scalar_one_or_none()
        if product_id is None:
            continue
        rows = db.execute(
            select(ProductIngredient, StockItem)
            .join(StockItem, StockItem.id == ProductIngredient.stock_id)
            .where(ProductIngredient.product_id == product_id)
        ).all()
        for ingredient, stock in rows:
            amount = ingredient.quantity_needed * quantity
            stock.current_quantity = stock.current_quantity + amount
            restored[stock.id] = restored.get(stock.id, Decimal('0')) + amount
    db.flush()
    return restored


def cancel_receipt_line_items(db: Session, *, receipt: Receipt, since: datetime) -> int:
    names = sorted({_snapshot_name(line) for line in receipt.line_items or []} - {''})
    if not names:
        return 0
    ids = db.execute(
        select(SessionLineItem.id).where(
            SessionLineItem.user_id == receipt.user_id,
            SessionLineItem.item_name.in_(names),
            SessionLineItem.status != LineItemStatus.CANCELLED,
            SessionLineItem.created_at >= since,
        )
    ).scalars().all()
    if ids:
        db.execute(update(SessionLineItem).where(SessionLineItem.id.in_(ids)).values(status=LineItemStatus.CANCELLED))
    return len(ids)


def refund_receipt(
    db: Session,
    *,
    receipt_id: int,
    cancelled_by: int | None,
    reason: str | None,
    restock: bool = True,
    now: datetime | None = None,
) -> RefundResult:
    clean_reason = (reason or '').strip()
    if not clean_reason:
        raise ValidationError('Please provide a reason for the refund')

    receipt = get_receipt(db, receipt_id=receipt_id)
    if receipt.status == ReceiptStatus.CANCELLED:
        raise ValidationError('Receipt is already cancelled')

    now = now or _now()
    with committed_step(db, 'cancel_receipt'):
        receipt.status = ReceiptStatus.CANCELLED
        receipt.cancelled_at = now
        receipt.cancelled_by = cancelled_by
        receipt.cancellation_reason = clean_reason

    restored: dict[int, Decimal] = {}
    if restock:
        with committed_step(db, 'restock_items'):
            restored = restock_receipt_lines(db, list(receipt.line_items or []))

    cancelled = 0
    window_start = now - timedelta(hours=settings.refund_line_item_window_hours)
    try:
        cancelled = cancel_receipt_line_items(db, receipt=receipt, since=window_start)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('Refund of receipt %s: failed to cancel order lines: %s', receipt.receipt_number, exc)

    logger.info(
        'Refunded receipt %s (%s): restocked %d stock row(s), cancelled %d order line(s)',
        receipt.receipt_number,
        clean_reason,
        len(restored),
        cancelled,
    )
    return RefundResult(receipt=receipt, restocked=restored, cancelled_line_items=cancelled)
