from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from spotin.auth import BACK_OFFICE_ROLES, POS_ROLES, Principal, require_role
from spotin.db import get_db
from spotin.dependencies import get_client_ip, http_error
from spotin.models import StockItem
from spotin.schemas import IngredientIn, ProductCreate, StockAdjustment, StockItemCreate
from spotin.services.audit_service import log_audit
from spotin.services.errors import ServiceError
from spotin.services.stock_service import (
    adjust_stock,
    create_product,
    create_stock_item,
    list_product_ingredients,
    list_stock_with_status,
    set_product_ingredients,
    stock_status,
    stock_summary,
)

router = APIRouter(tags=['inventory'])


def _stock_payload(item: StockItem) -> dict:
    return {
        'id': item.id,
        'name': item.name,
        'unit': item.unit,
        'current_quantity': item.current_quantity,
        'min_quantity': item.min_quantity,
        'cost_per_unit': item.cost_per_unit,
        'status': stock_status(item.current_quantity, item.min_quantity),
    }


@router.get('/stock')
def stock_overview(
    _: Principal = Depends(require_role(*POS_ROLES, *BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    rows = list_stock_with_status(db)
    return {'items': rows, 'summary': stock_summary(rows)}


@router.post('/stock')
def add_stock_item(
    payload: StockItemCreate,
    _: Principal = Depends(require_role(*BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        item = create_stock_item(
            db,
            name=payload.name,
            current_quantity=payload.current_quantity,
            min_quantity=payload.min_quantity,
            cost_per_unit=payload.cost_per_unit,
            unit=payload.unit,
            category=payload.category,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    db.commit()
    return _stock_payload(item)


@router.post('/stock/{stock_id}/adjust')
def adjust_stock_item(
    stock_id: int,
    payload: StockAdjustment,
    request: Request,
    principal: Principal = Depends(require_role(*BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        item = adjust_stock(db, stock_id=stock_id, delta=payload.delta)
    except ServiceError as exc:
        raise http_error(exc) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='STOCK_ADJUSTED',
        ip=get_client_ip(request),
        metadata={'stock_id': stock_id, 'delta': str(payload.delta)},
    )
    db.commit()
    return _stock_payload(item)


@router.post('/products')
def add_product(
    payload: ProductCreate,
    _: Principal = Depends(require_role(*BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        product = create_product(db, name=payload.name, price=payload.price, category=payload.category)
    except ServiceError as exc:
        raise http_error(exc) from exc
    db.commit()
    return {'id': product.id, 'name': product.name, 'price': product.price, 'category': product.category.value}


@router.put('/products/{product_id}/ingredients')
def replace_ingredients(
    product_id: int,
    payload: list[IngredientIn],
    _: Principal = Depends(require_role(*BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        set_product_ingredients(
            db,
            product_id=product_id,
            ingredients={row.stock_id: row.quantity_needed for row in payload},
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    db.commit()
    return list_product_ingredients(db, product_id=product_id)
