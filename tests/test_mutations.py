from sqlalchemy import Column, DateTime, Integer, String, func, select
from sqlalchemy.orm import DeclarativeBase

from modelql import generate_schema
from tests.models import ItemNote, Order, OrderItem, OrderStatus
from tests.schema import build_schema, schema


async def _count(db_session, model):
    return await db_session.scalar(select(func.count()).select_from(model))


async def test_add_with_nested_cascade(db_session, sample_customers):
    mutation = """
    mutation($o: OrderInput!) {
      addOrder(Order: $o) { id number status customer { name } items { sku quantity notes { text } } }
    }
    """
    variables = {
        "o": {
            "number": "N-1",
            "status": "NEW",
            "customer_id": sample_customers[1].id,
            "items": [
                {"sku": "A", "quantity": 1, "notes": [{"text": "fragile"}]},
                {"sku": "B", "quantity": 3},
            ],
        }
    }
    res = await schema.execute(mutation, variable_values=variables, context_value={"db_session": db_session})
    assert res.errors is None, res.errors
    added = res.data["addOrder"]
    assert added["number"] == "N-1"
    assert added["status"] == "NEW"
    assert added["customer"] == {"name": "Bob Smith"}
    assert [(i["sku"], i["quantity"]) for i in added["items"]] == [("A", 1), ("B", 3)]
    assert added["items"][0]["notes"] == [{"text": "fragile"}]
    assert await _count(db_session, OrderItem) == 2
    assert await _count(db_session, ItemNote) == 1


async def test_add_ignores_belongs_to_input(db_session, sample_customers):
    mutation = 'mutation { addOrder(Order: {number: "N-2", status: SHIPPED, customer: {name: "ignored"}}) { id customer_id } }'
    res = await schema.execute(mutation, context_value={"db_session": db_session})
    assert res.errors is None, res.errors
    assert res.data["addOrder"]["customer_id"] is None
    order = await db_session.scalar(select(Order).where(Order.number == "N-2"))
    assert order.status == OrderStatus.SHIPPED


async def test_update_scalars(db_session, populated_db):
    order = populated_db["orders"][2]
    mutation = "mutation($o: OrderInput!) { updateOrder(Order: $o) { id number status } }"
    res = await schema.execute(
        mutation,
        variable_values={"o": {"id": order.id, "status": "SHIPPED"}},
        context_value={"db_session": db_session},
    )
    assert res.errors is None, res.errors
    assert res.data["updateOrder"] == {"id": order.id, "number": "B-200", "status": "SHIPPED"}


async def test_update_replaces_nested_children(db_session, populated_db):
    order = populated_db["orders"][0]
    book, pen = order.items
    mutation = """
    mutation($o: OrderInput!) {
      updateOrder(Order: $o) { number items { id sku quantity notes { text } } }
    }
    """
    variables = {
        "o": {
            "id": order.id,
            "number": "A-100-R",
            "items": [
                # existing child: updated, its notes replaced
                {"id": book.id, "sku": "BOOK", "quantity": 5, "notes": [{"text": "only note"}]},
                # new child: created under the order
                {"sku": "MUG", "quantity": 1},
            ],
        }
    }
    res = await schema.execute(mutation, variable_values=variables, context_value={"db_session": db_session})
    assert res.errors is None, res.errors
    updated = res.data["updateOrder"]
    assert updated["number"] == "A-100-R"
    assert [(i["sku"], i["quantity"]) for i in updated["items"]] == [("BOOK", 5), ("MUG", 1)]
    assert updated["items"][0]["id"] == book.id
    assert updated["items"][0]["notes"] == [{"text": "only note"}]
    # PEN was absent from the array and is gone
    assert await db_session.get(OrderItem, pen.id) is None
    remaining = (await db_session.scalars(select(ItemNote.text).order_by(ItemNote.id))).all()
    assert remaining == ["only note"]


async def test_update_without_nested_array_keeps_children(db_session, populated_db):
    order = populated_db["orders"][0]
    res = await schema.execute(
        "mutation($o: OrderInput!) { updateOrder(Order: $o) { items { sku } } }",
        variable_values={"o": {"id": order.id, "number": "A-100-X"}},
        context_value={"db_session": db_session},
    )
    assert res.errors is None, res.errors
    assert [i["sku"] for i in res.data["updateOrder"]["items"]] == ["BOOK", "PEN"]


async def test_update_unknown_key(db_session, populated_db):
    res = await schema.execute(
        'mutation { updateOrder(Order: {id: 9999, number: "X"}) { id } }',
        context_value={"db_session": db_session},
    )
    assert res.errors
    assert "not found" in res.errors[0].message


async def test_update_requires_key(db_session, populated_db):
    res = await schema.execute(
        'mutation { updateOrder(Order: {number: "X"}) { id } }',
        context_value={"db_session": db_session},
    )
    assert res.errors
    assert "is required" in res.errors[0].message


async def test_delete(db_session, populated_db):
    order = populated_db["orders"][1]
    res = await schema.execute(
        "mutation($id: Int!) { deleteOrder(id: $id) }",
        variable_values={"id": order.id},
        context_value={"db_session": db_session},
    )
    assert res.errors is None, res.errors
    assert res.data["deleteOrder"] == 1
    assert await db_session.scalar(select(Order).where(Order.id == order.id)) is None


async def test_delete_missing_key_returns_zero(db_session, populated_db):
    res = await schema.execute("mutation { deleteOrder(id: 424242) }", context_value={"db_session": db_session})
    assert res.errors is None, res.errors
    assert res.data["deleteOrder"] == 0


async def test_failed_write_rolls_back(db_session, populated_db):
    # notes require text: the nested insert fails and nothing of the update survives
    order = populated_db["orders"][0]
    book = order.items[0]
    # the rollback expires every loaded instance; keep plain keys
    order_id, book_id = order.id, book.id
    res = await schema.execute(
        "mutation($o: OrderInput!) { updateOrder(Order: $o) { id } }",
        variable_values={"o": {"id": order_id, "number": "SHOULD-NOT-STICK", "items": [{"id": book_id, "notes": [{}]}]}},
        context_value={"db_session": db_session},
    )
    assert res.errors
    number = await db_session.scalar(select(Order.number).where(Order.id == order_id))
    assert number == "A-100"


async def test_mutations_without_subscriptions_publish_nothing(db_session, sample_customers, pub_sub):
    s = build_schema(pub_sub=pub_sub)
    subscription = pub_sub.subscribe("ORDER_ADDED")
    res = await s.execute(
        'mutation { addOrder(Order: {number: "Q-1", status: NEW}) { id } }', context_value={"db_session": db_session}
    )
    assert res.errors is None, res.errors
    assert subscription._queue.empty()
    subscription.unsubscribe()


class StampedBase(DeclarativeBase):
    pass


class Memo(StampedBase):
    __tablename__ = "memos"

    id = Column(Integer, primary_key=True)
    title = Column(String(40), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


async def test_update_with_sql_onupdate_column(engine, db_session, pub_sub):
    async with engine.begin() as conn:
        await conn.run_sync(StampedBase.metadata.create_all)
    try:
        db_session.add(Memo(id=1, title="draft"))
        await db_session.commit()
        s = generate_schema(StampedBase, subscriptions=True, pub_sub=pub_sub)
        subscription = pub_sub.subscribe("MEMO_UPDATED")
        res = await s.execute(
            'mutation { updateMemo(Memo: {id: 1, title: "final"}) { id title updated_at } }',
            context_value={"db_session": db_session},
        )
        assert res.errors is None, res.errors
        assert res.data["updateMemo"]["title"] == "final"
        assert res.data["updateMemo"]["updated_at"] is not None
        payload = subscription._queue.get_nowait()
        event = payload["memoUpdated"]
        assert event.title == "final"
        assert event.updated_at is not None
        subscription.unsubscribe()
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(StampedBase.metadata.drop_all)
