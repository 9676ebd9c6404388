from __future__ import annotations

from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from spotin.models import ItemCategory, Product, ProductIngredient, StockItem
from spotin.services.errors import NotFoundError, ValidationError

STATUS_CRITICAL = 'critical'
STATUS_LOW = 'low'
STATUS_GOOD = 'good'


def stock_status(current_quantity: Decimal, min_quantity: Decimal) -> str:
    if current_quantity <= min_quantity * Decimal('0.5'):
        return STATUS_CRITICAL
    if current_quantity <= min_quantity:
        return STATUS_LOW
    return STATUS_GOOD


def _row(item: StockItem) -> dict:
    return {
        'id': item.id,
        'name': item.name,
        'unit': item.unit,
        'category': item.category,
        'current_quantity': item.current_quantity,
        'min_quantity': item.min_quantity,
        'cost_per_unit': item.cost_per_unit,
        'status': stock_status(item.current_quantity, item.min_quantity),
        # Rough ceiling used by the stock gauges.
        'maximum': item.min_quantity * 4,
    }


def list_stock_with_status(db: Session) -> list[dict]:
    items = db.execute(
        select(StockItem).where(StockItem.is_active.is_(True)).order_by(StockItem.name.asc())
    ).scalars().all()
    return [_row(item) for item in items]


def stock_summary(rows: list[dict]) -> dict:
    counts = {STATUS_CRITICAL: 0, STATUS_LOW: 0, STATUS_GOOD: 0}
    value = Decimal('0')
    for row in rows:
        counts[row['status']] += 1
        value += row['current_quantity'] * row['cost_per_unit']
    return {
        **counts,
        'needs_attention': counts[STATUS_CRITICAL] + counts[STATUS_LOW],
        'inventory_value': value.quantize(Decimal('0.01')),
    }


def get_stock_item(db: Session, *, stock_id: int) -> StockItem:
    item = db.execute(select(StockItem).where(StockItem.id == stock_id)).scalar_one_or_none()
    if not item:
        raise NotFoundError('Stock item not found')
    return item


def create_stock_item(
    db: Session,
    *,
    name: str,
    current_quantity: Decimal,
    min_quantity: Decimal,
    cost_per_unit: Decimal,
    unit: str = 'unit',
    category: str | None = None,
) -> StockItem:
    clean_name = name.strip()
    if not clean_name:
        raise ValidationError('Stock item name is required')
    if current_quantity < 0 or min_quantity < 0 or cost_per_unit < 0:
        raise ValidationError('Stock quantities and cost cannot be negative')

    item = StockItem(
        name=clean_name,
        unit=unit.strip() or 'unit',
        category=category.strip() if category and category.strip() else None,
        current_quantity=current_quantity,
        min_quantity=min_quantity,
        cost_per_unit=cost_per_unit,
    )
    db.add(item)
    db.flush()
    return item


def adjust_stock(db: Session, *, stock_id: int, delta: Decimal) -> StockItem:
    item = get_stock_item(db, stock_id=stock_id)
    item.current_quantity = max(Decimal('0'), item.current_quantity + delta)
    db.flush()
    return item


def create_product(
    db: Session,
    *,
    name: str,
    price: Decimal,
    category: ItemCategory = ItemCategory.PRODUCT,
) -> Product:
    clean_name = name.strip()
    if not clean_name:
        raise ValidationError('Product name is required')
    if price < 0:
        raise ValidationError('Product price cannot be negative')
    existing = db.execute(select(Product.id).where(Product.name == clean_name)).scalar_one_or_none()
    if existing:
        raise ValidationError(f'Product {clean_name} already exists')

    product = Product(name=clean_name, price=price, category=category)
    db.add(product)
    db.flush()
    return product


def set_product_ingredients(
    db: Session,
    *,
    product_id: int,
    ingredients: dict[int, Decimal],
) -> list[ProductIngredient]:
    """Replace the recipe of a product; ``ingredients`` maps stock id to quantity per unit sold."""
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if not product:
        raise NotFoundError('Product not found')
    for stock_id, quantity in ingredients.items():
        if quantity <= 0:
            raise ValidationError(f'Quantity needed must be greater than zero for stock {stock_id}')

    known = set(db.execute(select(StockItem.id).where(StockItem.id.in_(list(ingredients)))).scalars().all())
    missing = sorted(set(ingredients) - known)
    if missing:
        raise NotFoundError(f'Stock item not found: {missing[0]}')

    db.execute(delete(ProductIngredient).where(ProductIngredient.product_id == product_id))
    rows = [
        ProductIngredient(product_id=product_id, stock_id=stock_id, quantity_needed=quantity)
        for stock_id, quantity in sorted(ingredients.items())
    ]
    db.add_all(rows)
    db.flush()
    return rows


def list_product_ingredients(db: Session, *, product_id: int) -> list[dict]:
    rows = db.execute(
        select(ProductIngredient.stock_id, StockItem.name, StockItem.unit, ProductIngredient.quantity_needed)
        .join(StockItem, StockItem.id == ProductIngredient.stock_id)
        .where(ProductIngredient.product_id == product_id)
        .order_by(StockItem.name.asc())
    ).all()
    return [
        {'stock_id': row.stock_id, 'name': row.name, 'unit': row.unit, 'quantity_needed': row.quantity_needed}
        for row in rows
    ]
