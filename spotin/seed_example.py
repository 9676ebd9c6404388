from decimal import Decimal

from sqlalchemy import select

from spotin.db import SessionLocal, engine
from spotin.models import (
    Base,
    Client,
    ItemCategory,
    Principal,
    PrincipalRole,
    Product,
    ProductIngredient,
    StockItem,
)
from spotin.security.passwords import hash_password

DEMO_STAFF = [
    ('admin', 'adminpass123', PrincipalRole.ADMIN),
    ('reception', 'receptionpass', PrincipalRole.RECEPTIONIST),
    ('barista', 'baristapass', PrincipalRole.BARISTA),
]


def seed() -> None:
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        for username, password, role in DEMO_STAFF:
            existing = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
            if not existing:
                db.add(Principal(username=username, password_hash=hash_password(password), role=role, active=True))

        client = db.execute(select(Client).where(Client.barcode == 'CLIENT12345')).scalar_one_or_none()
        if not client:
            db.add(
                Client(
                    client_code='C-2024-000001',
                    barcode='CLIENT12345',
                    first_name='Ahmed',
                    last_name='Hassan',
                    full_name='Ahmed Hassan',
                    phone='+201000000001',
                    email='ahmed@example.com',
                    active=False,
                    is_active=True,
                )
            )

        beans = db.execute(select(StockItem).where(StockItem.name == 'Coffee beans')).scalar_one_or_none()
        if not beans:
            beans = StockItem(
                name='Coffee beans',
                unit='g',
                category='coffee',
                current_quantity=Decimal('2000'),
                min_quantity=Decimal('500'),
                cost_per_unit=Decimal('0.05'),
            )
            db.add(beans)
        milk = db.execute(select(StockItem).where(StockItem.name == 'Milk')).scalar_one_or_none()
        if not milk:
            milk = StockItem(
                name='Milk',
                unit='ml',
                category='dairy',
                current_quantity=Decimal('5000'),
                min_quantity=Decimal('1000'),
                cost_per_unit=Decimal('0.01'),
            )
            db.add(milk)
        db.flush()

        latte = db.execute(select(Product).where(Product.name == 'Latte')).scalar_one_or_none()
        if not latte:
            latte = Product(name='Latte', price=Decimal('45.00'), category=ItemCategory.PRODUCT)
            db.add(latte)
            db.flush()
            db.add_all(
                [
                    ProductIngredient(product_id=latte.id, stock_id=beans.id, quantity_needed=Decimal('18')),
                    ProductIngredient(product_id=latte.id, stock_id=milk.id, quantity_needed=Decimal('200')),
                ]
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
