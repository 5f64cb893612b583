"""Database fixtures for modelql tests (shared)."""

from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Category, Customer, ItemNote, Order, OrderItem, OrderStatus, Tag


async def _insert_in_order(session: AsyncSession, rows):
    # one flush per row: a single flush does not promise insert order
    for row in rows:
        session.add(row)
        await session.flush()
    await session.commit()
    return rows


async def create_sample_customers(session: AsyncSession):
    """Create and commit the sample customers."""
    return await _insert_in_order(session, [
        Customer(name="Alice Johnson", email="alice@example.com", vip=True, password="secret-a", api_token="t-a"),
        Customer(name="Bob Smith", email="bob@example.com", vip=False, password="secret-b"),
        Customer(name="Carol White", email="carol@example.org", vip=True),
    ])


async def create_sample_orders(session: AsyncSession, customers):
    """Create and commit orders with nested items, notes and tags."""
    alice, bob, _ = customers
    rush = Tag(label="rush")
    gift = Tag(label="gift")
    return await _insert_in_order(session, [
        Order(
            number="A-100",
            status=OrderStatus.NEW,
            created_at=datetime(2024, 1, 1, 12, 0),
            customer_id=alice.id,
            items=[
                OrderItem(sku="BOOK", quantity=2, notes=[ItemNote(text="wrap it"), ItemNote(text="signed copy")]),
                OrderItem(sku="PEN", quantity=10),
            ],
            tags=[rush, gift],
        ),
        Order(number="A-101", status=OrderStatus.SHIPPED, customer_id=alice.id, items=[OrderItem(sku="INK", quantity=1)]),
        Order(number="B-200", status=OrderStatus.NEW, customer_id=bob.id, tags=[gift]),
    ])


async def create_many_orders(session: AsyncSession, customer, count: int):
    """Plain orders ``P-000``... used by the pagination tests."""
    return await _insert_in_order(
        session, [Order(number=f"P-{i:03d}", status=OrderStatus.NEW, customer_id=customer.id) for i in range(count)]
    )


async def create_sample_categories(session: AsyncSession):
    root = Category(name="root", children=[Category(name="books"), Category(name="music")])
    session.add(root)
    await session.flush()
    await session.commit()
    return root


@pytest.fixture(scope="function")
async def sample_customers(db_session: AsyncSession):
    return await create_sample_customers(db_session)


@pytest.fixture(scope="function")
async def sample_orders(db_session: AsyncSession, sample_customers):
    return await create_sample_orders(db_session, sample_customers)


@pytest.fixture(scope="function")
async def populated_db(db_session: AsyncSession, sample_customers, sample_orders):
    categories = await create_sample_categories(db_session)
    return {
        "customers": sample_customers,
        "orders": sample_orders,
        "categories": categories,
    }
