from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from spotin.config import settings
from spotin.models import (
    Client,
    ItemCategory,
    LineItemStatus,
    PaymentMethod,
    Product,
    ProductIngredient,
    Receipt,
    SessionLineItem,
    StockItem,
    TransactionType,
)
from spotin.services.errors import NotFoundError, ValidationError
from spotin.services.steps import committed_step

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')
ZERO = Decimal('0')

LINE_ITEM_TRANSITIONS: dict[LineItemStatus, set[LineItemStatus]] = {
    LineItemStatus.PENDING: {LineItemStatus.PREPARING, LineItemStatus.COMPLETED, LineItemStatus.CANCELLED},
    LineItemStatus.PREPARING: {LineItemStatus.COMPLETED, LineItemStatus.CANCELLED},
    LineItemStatus.COMPLETED: {LineItemStatus.SERVED},
    LineItemStatus.SERVED: set(),
    LineItemStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class CartItem:
    id: int | None
    name: str
    quantity: int
    price: Decimal
    category: ItemCategory = ItemCategory.PRODUCT

    @property
    def total(self) -> Decimal:
        return (self.price * self.quantity).quantize(MONEY)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    total: Decimal


@dataclass(frozen=True)
class StockMovement:
    stock_id: int
    stock_name: str
    quantity_before: Decimal
    quantity_after: Decimal
    requested: Decimal


@dataclass
class OrderResult:
    receipt: Receipt
    totals: OrderTotals
    line_item_ids: list[int] = field(default_factory=list)
    completed_line_items: int = 0
    stock_movements: list[StockMovement] = field(default_factory=list)

    @property
    def receipt_number(self) -> str:
        return self.receipt.receipt_number


def generate_receipt_number(*, now_ms: int | None = None, rng: random.Random | None = None) -> str:
    """Return ``<prefix>-<epoch ms>-<3 digit random>``.

    Two receipts created within the same millisecond collide with probability
    1/1000; the unique constraint on ``receipts.receipt_number`` rejects the
    second one.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = (rng or random).randrange(1000)
    return f'{settings.receipt_number_prefix}-{now_ms}-{suffix:03d}'


def _to_decimal(value, label: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid {label}') from exc


def calculate_totals(cart: Iterable[CartItem], discount_percentage: Decimal | int | str = ZERO) -> OrderTotals:
    pct = _to_decimal(discount_percentage, 'discount percentage')
    if pct < 0 or pct > 100:
        raise ValidationError('Discount percentage must be between 0 and 100')
    subtotal = sum((item.total for item in cart), ZERO).quantize(MONEY)
    discount = (subtotal * pct / Decimal('100')).quantize(MONEY)
    return OrderTotals(subtotal=subtotal, discount=discount, total=subtotal - discount)


def parse_payment_method(value: str | PaymentMethod) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value or '').strip().lower())
    except ValueError as exc:
        raise ValidationError(f'Unsupported payment method: {value}') from exc


def validate_cart(cart: Sequence[CartItem]) -> None:
    if not cart:
        raise ValidationError('Cart is empty')
    for item in cart:
        if not item.name or not item.name.strip():
            raise ValidationError('Every cart item needs a name')
        if item.quantity <= 0:
            raise ValidationError(f'Quantity must be greater than zero for {item.name}')
        if item.price < 0:
            raise ValidationError(f'Price cannot be negative for {item.name}')


def _ensure_client(db: Session, client_id: int) -> Client:
    client = db.execute(
        select(Client).where(Client.id == client_id, Client.is_active.is_(True))
    ).scalar_one_or_none()
    if not client:
        raise NotFoundError('Client not found')
    return client


def _ensure_products(db: Session, cart: Sequence[CartItem]) -> None:
    product_ids = {item.id for item in cart if item.category is ItemCategory.PRODUCT and item.id is not None}
    if not product_ids:
        return
    found = set(db.execute(select(Product.id).where(Product.id.in_(product_ids))).scalars().all())
    missing = sorted(product_ids - found)
    if missing:
        raise NotFoundError(f'Product not found: {missing[0]}')


def receipt_snapshot(cart: Sequence[CartItem]) -> list[dict]:
    return [
        {
            'name': item.name.strip(),
            'quantity': item.quantity,
            'price': float(item.price),
            'total': float(item.total),
        }
        for item in cart
    ]


def create_order_lines(db: Session, *, client_id: int, cart: Sequence[CartItem]) -> list[SessionLineItem]:
    lines = [
        SessionLineItem(
            user_id=client_id,
            product_id=item.id if item.category is ItemCategory.PRODUCT else None,
            item_name=item.name.strip(),
            quantity=item.quantity,
            price=item.price,
            status=LineItemStatus.PENDING,
        )
        for item in cart
    ]
    db.add_all(lines)
    db.flush()
    return lines


def complete_order_lines(db: Session, *, client_id: int, item_names: Iterable[str]) -> int:
    names = sorted({name.strip() for name in item_names})
    if not names:
        return 0
    ids = db.execute(
        select(SessionLineItem.id).where(
            SessionLineItem.user_id == client_id,
            SessionLineItem.item_name.in_(names),
            SessionLineItem.status == LineItemStatus.PENDING,
        )
    ).scalars().all()
    if ids:
        db.execute(update(SessionLineItem).where(SessionLineItem.id.in_(ids)).values(status=LineItemStatus.COMPLETED))
    return len(ids)


def deduct_stock_for_cart(db: Session, cart: Sequence[CartItem]) -> list[StockMovement]:
    movements: list[StockMovement] = []
    for item in cart:
        if item.category is not ItemCategory.PRODUCT or item.id is None:
            continue
        rows = db.execute(
            select(ProductIngredient, StockItem)
            .join(StockItem, StockItem.id == ProductIngredient.stock_id)
            .where(ProductIngredient.product_id == item.id)
        ).all()
        for ingredient, stock in rows:
            requested = ingredient.quantity_needed * item.quantity
            before = stock.current_quantity
            stock.current_quantity = max(ZERO, before - requested)
            if requested > before:
                logger.warning(
                    'Stock %s (%s) short by %s while selling %s',
                    stock.id,
                    stock.name,
                    requested - before,
                    item.name,
                )
            movements.append(
                StockMovement(
                    stock_id=stock.id,
                    stock_name=stock.name,
                    quantity_before=before,
                    quantity_after=stock.current_quantity,
                    requested=requested,
                )
            )
    db.flush()
    return movements


def create_order(db: Session, *, client_id: int, cart: Sequence[CartItem]) -> list[SessionLineItem]:
    validate_cart(cart)
    _ensure_client(db, client_id)
    _ensure_products(db, cart)
    return create_order_lines(db, client_id=client_id, cart=cart)


def process_complete_order(
    db: Session,
    *,
    client_id: int,
    cart: Sequence[CartItem],
    payment_method: str | PaymentMethod,
    discount_percentage: Decimal | int | str = ZERO,
    rng: random.Random | None = None,
    now_ms: int | None = None,
) -> OrderResult:
    """Order lines, receipt, line completion and stock deduction, each committed on its own.

    There is no rollback across steps: if stock deduction fails the receipt
    and the completed order lines stay persisted.
    """
    validate_cart(cart)
    method = parse_payment_method(payment_method)
    totals = calculate_totals(cart, discount_percentage)
    _ensure_client(db, client_id)
    _ensure_products(db, cart)

    with committed_step(db, 'create_order_lines'):
        lines = create_order_lines(db, client_id=client_id, cart=cart)

    receipt = Receipt(
        receipt_number=generate_receipt_number(now_ms=now_ms, rng=rng),
        user_id=client_id,
        line_items=receipt_snapshot(cart),
        amount=totals.subtotal,
        discount=totals.discount,
        total_amount=totals.total,
        payment_method=method,
        transaction_type=TransactionType.ORDER,
    )
    with committed_step(db, 'create_receipt'):
        db.add(receipt)

    with committed_step(db, 'complete_order_lines'):
        completed = complete_order_lines(db, client_id=client_id, item_names=[item.name for item in cart])

    with committed_step(db, 'deduct_stock'):
        movements = deduct_stock_for_cart(db, cart)

    logger.info(
        'Order for client %s paid by %s: receipt %s, total %s, %d line(s), %d stock movement(s)',
        client_id,
        method.value,
        receipt.receipt_number,
        totals.total,
        len(lines),
        len(movements),
    )
    return OrderResult(
        receipt=receipt,
        totals=totals,
        line_item_ids=[line.id for line in lines],
        completed_line_items=completed,
        stock_movements=movements,
    )


def list_pending_line_items(db: Session, *, client_id: int | None = None) -> list[SessionLineItem]:
    query = select(SessionLineItem).where(SessionLineItem.status == LineItemStatus.PENDING)
    if client_id is not None:
        query = query.where(SessionLineItem.user_id == client_id)
    return db.execute(query.order_by(SessionLineItem.created_at.asc(), SessionLineItem.id.asc())).scalars().all()


def update_line_item_status(db: Session, *, line_item_id: int, status: str | LineItemStatus) -> SessionLineItem:
    try:
        target = LineItemStatus(status)
    except ValueError as exc:
        raise ValidationError(f'Unknown order status: {status}') from exc

    line = db.execute(select(SessionLineItem).where(SessionLineItem.id == line_item_id)).scalar_one_or_none()
    if not line:
        raise NotFoundError('Order line not found')
    if target == line.status:
        return line
    if target not in LINE_ITEM_TRANSITIONS[line.status]:
        raise ValidationError(f'Cannot move order line from {line.status.value} to {target.value}')

    line.status = target
    db.flush()
    return line
