from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


def _value_enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [member.value for member in members])


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    CEO = 'CEO'
    OPERATIONS_MANAGER = 'OPERATIONS_MANAGER'
    FINANCE_MANAGER = 'FINANCE_MANAGER'
    COMMUNITY_MANAGER = 'COMMUNITY_MANAGER'
    RECEPTIONIST = 'RECEPTIONIST'
    BARISTA = 'BARISTA'


class CheckInStatus(str, Enum):
    CHECKED_IN = 'checked_in'
    CHECKED_OUT = 'checked_out'


class LineItemStatus(str, Enum):
    PENDING = 'pending'
    PREPARING = 'preparing'
    COMPLETED = 'completed'
    SERVED = 'served'
    CANCELLED = 'cancelled'


class ReceiptStatus(str, Enum):
    ACTIVE = 'active'
    CANCELLED = 'cancelled'


class PaymentMethod(str, Enum):
    CASH = 'cash'
    CARD = 'card'
    MOBILE = 'mobile'


class TransactionType(str, Enum):
    ORDER = 'order'
    MEMBERSHIP = 'membership'
    DAY_USE_TICKET = 'day_use_ticket'


class ItemCategory(str, Enum):
    PRODUCT = 'product'
    ROOM = 'room'
    TICKET = 'ticket'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Client(Base):
    __tablename__ = 'clients'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    client_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    barcode: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    # On premises right now.
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    # False once soft-deleted.
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class CheckIn(Base):
    __tablename__ = 'check_ins'
    __table_args__ = (
        Index(
            'check_ins_one_open_per_client',
            'client_id',
            unique=True,
            postgresql_where=text("status = 'checked_in' AND checked_out_at IS NULL"),
            sqlite_where=text("status = 'checked_in' AND checked_out_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    client_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('clients.id'), nullable=False)
    user_id: Mapped[int | None] = mapped_column(BigInteger)
    status: Mapped[CheckInStatus] = mapped_column(
        _value_enum(CheckInStatus, 'check_in_status'), nullable=False, default=CheckInStatus.CHECKED_IN
    )
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    checked_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CheckInLog(Base):
    __tablename__ = 'check_in_logs'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    client_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('clients.id'), nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    scanned_barcode: Mapped[str] = mapped_column(Text, nullable=False)
    scanned_by_user_id: Mapped[int | None] = mapped_column(BigInteger)
    notes: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[ItemCategory] = mapped_column(
        _value_enum(ItemCategory, 'item_category'), nullable=False, default=ItemCategory.PRODUCT
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StockItem(Base):
    __tablename__ = 'stock'
    __table_args__ = (
        CheckConstraint('current_quantity >= 0', name='stock_current_quantity_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False, default='unit')
    category: Mapped[str | None] = mapped_column(Text)
    current_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=Decimal('0'))
    min_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=Decimal('0'))
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class ProductIngredient(Base):
    __tablename__ = 'product_ingredients'

    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id', ondelete='CASCADE'), primary_key=True)
    stock_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stock.id', ondelete='CASCADE'), primary_key=True)
    quantity_needed: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)


class SessionLineItem(Base):
    __tablename__ = 'session_line_items'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('clients.id'), nullable=False)
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('products.id'))
    item_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[LineItemStatus] = mapped_column(
        _value_enum(LineItemStatus, 'line_item_status'), nullable=False, default=LineItemStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Receipt(Base):
    __tablename__ = 'receipts'
    __table_args__ = (
        UniqueConstraint('receipt_number', name='receipts_receipt_number_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receipt_number: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('clients.id'), nullable=False)
    line_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(_value_enum(PaymentMethod, 'payment_method'), nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        _value_enum(TransactionType, 'transaction_type'), nullable=False, default=TransactionType.ORDER
    )
    status: Mapped[ReceiptStatus] = mapped_column(
        _value_enum(ReceiptStatus, 'receipt_status'), nullable=False, default=ReceiptStatus.ACTIVE
    )
    receipt_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
