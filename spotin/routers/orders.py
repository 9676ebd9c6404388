from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from spotin.auth import BACK_OFFICE_ROLES, POS_ROLES, Principal, require_role
from spotin.db import get_db
from spotin.dependencies import get_client_ip, http_error
from spotin.models import Receipt, SessionLineItem
from spotin.schemas import CompleteOrderRequest, CreateOrderRequest, LineItemStatusUpdate, RefundRequest
from spotin.services.audit_service import log_audit
from spotin.services.errors import ServiceError
from spotin.services.order_workflow_service import (
    CartItem,
    create_order,
    list_pending_line_items,
    process_complete_order,
    update_line_item_status,
)
from spotin.services.refund_service import get_receipt, refund_receipt

router = APIRouter(tags=['orders'])


def _cart(items) -> list[CartItem]:
    return [
        CartItem(id=item.id, name=item.name, quantity=item.quantity, price=item.price, category=item.category)
        for item in items
    ]


def _line_payload(line: SessionLineItem) -> dict:
    return {
        'id': line.id,
        'user_id': line.user_id,
        'item_name': line.item_name,
        'quantity': line.quantity,
        'price': line.price,
        'status': line.status.value,
        'created_at': line.created_at,
    }


def _receipt_payload(receipt: Receipt) -> dict:
    return {
        'id': receipt.id,
        'receipt_number': receipt.receipt_number,
        'user_id': receipt.user_id,
        'line_items': receipt.line_items,
        'amount': receipt.amount,
        'discount': receipt.discount,
        'total_amount': receipt.total_amount,
        'payment_method': receipt.payment_method.value,
        'transaction_type': receipt.transaction_type.value,
        'status': receipt.status.value,
        'receipt_date': receipt.receipt_date,
        'cancelled_at': receipt.cancelled_at,
        'cancelled_by': receipt.cancelled_by,
        'cancellation_reason': receipt.cancellation_reason,
    }


@router.post('/orders')
def complete_order(
    payload: CompleteOrderRequest,
    _: Principal = Depends(require_role(*POS_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        result = process_complete_order(
            db,
            client_id=payload.client_id,
            cart=_cart(payload.items),
            payment_method=payload.payment_method,
            discount_percentage=payload.discount_percentage,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    return {
        'success': True,
        'receipt_number': result.receipt_number,
        'receipt': _receipt_payload(result.receipt),
        'line_item_ids': result.line_item_ids,
        'completed_line_items': result.completed_line_items,
        'stock_movements': [
            {
                'stock_id': movement.stock_id,
                'name': movement.stock_name,
                'before': movement.quantity_before,
                'after': movement.quantity_after,
            }
            for movement in result.stock_movements
        ],
    }


@router.post('/orders/lines')
def add_order_lines(
    payload: CreateOrderRequest,
    _: Principal = Depends(require_role(*POS_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        lines = create_order(db, client_id=payload.client_id, cart=_cart(payload.items))
    except ServiceError as exc:
        raise http_error(exc) from exc
    db.commit()
    return [_line_payload(line) for line in lines]


@router.get('/orders/pending')
def pending_orders(
    client_id: int | None = None,
    _: Principal = Depends(require_role(*POS_ROLES)),
    db: Session = Depends(get_db),
):
    return [_line_payload(line) for line in list_pending_line_items(db, client_id=client_id)]


@router.patch('/orders/lines/{line_item_id}')
def change_line_status(
    line_item_id: int,
    payload: LineItemStatusUpdate,
    _: Principal = Depends(require_role(*POS_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        line = update_line_item_status(db, line_item_id=line_item_id, status=payload.status)
    except ServiceError as exc:
        raise http_error(exc) from exc
    db.commit()
    return _line_payload(line)


@router.get('/receipts/{receipt_id}')
def receipt_detail(
    receipt_id: int,
    _: Principal = Depends(require_role(*POS_ROLES, *BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        receipt = get_receipt(db, receipt_id=receipt_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return _receipt_payload(receipt)


@router.post('/receipts/{receipt_id}/refund')
def refund(
    receipt_id: int,
    payload: RefundRequest,
    request: Request,
    principal: Principal = Depends(require_role(*BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        result = refund_receipt(
            db,
            receipt_id=receipt_id,
            cancelled_by=principal.id,
            reason=payload.reason,
            restock=payload.restock,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='RECEIPT_REFUNDED',
        ip=get_client_ip(request),
        metadata={
            'receipt_number': result.receipt.receipt_number,
            'restock': payload.restock,
            'cancelled_line_items': result.cancelled_line_items,
        },
    )
    db.commit()
    return {
        'success': True,
        'receipt': _receipt_payload(result.receipt),
        'restocked': {str(stock_id): amount for stock_id, amount in result.restocked.items()},
        'cancelled_line_items': result.cancelled_line_items,
    }
