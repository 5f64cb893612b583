import textwrap

import pytest
import strawberry
from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import DeclarativeBase

from modelql import generate_schema
from modelql.errors import CustomResolverError, EntityDefinitionError
from modelql.overrides import ResolverDirectory, merge_layers
from tests.schema import build_schema


def _archive_widgets() -> int:
    return 42


async def _widgets_inline(info, **filters):
    return []


def _touch_widget(info, **arguments):
    return None


class WidgetBase(DeclarativeBase):
    pass


class Widget(WidgetBase):
    __tablename__ = "widgets"
    __resolvers__ = {
        "query": {"widgets": _widgets_inline},
        "mutation": {
            "addWidget": strawberry.mutation(resolver=_archive_widgets, description="inline field"),
            "touchWidget": _touch_widget,
        },
    }

    id = Column(Integer, primary_key=True)
    label = Column(String(20), nullable=False)


def _write(root, relative, source):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source))
    return path


@pytest.fixture
def customs_dir(tmp_path):
    _write(tmp_path, "query/orders.py", """
        from typing import List

        import strawberry


        @strawberry.field(description="replaced list")
        def resolver() -> List[str]:
            return ["custom"]
    """)
    _write(tmp_path, "query/health.py", """
        name = "ping"


        def resolver() -> str:
            return "pong"
    """)
    _write(tmp_path, "query/vip.py", """
        import strawberry

        name = "vipCustomers"


        @strawberry.field
        def resolver() -> str:
            return "discovered"
    """)
    _write(tmp_path, "query/_shared.py", "raise RuntimeError('helper modules are never imported')\n")
    _write(tmp_path, "mutation/addTag.py", """
        import strawberry


        @strawberry.mutation
        def resolver(label: str) -> str:
            return label.upper()
    """)
    return tmp_path


def _field_type(schema, root, name):
    return str(schema._schema.get_type(root).fields[name].type)


def test_discovered_resolvers(customs_dir):
    names = dict(ResolverDirectory(customs_dir).list_resolvers("query"))
    assert sorted(names) == ["orders", "ping", "vipCustomers"]
    assert [n for n, _ in ResolverDirectory(customs_dir).list_resolvers("mutation")] == ["addTag"]


async def test_directory_overrides_generated_fields(customs_dir):
    schema = build_schema(customs_dir_path=str(customs_dir))
    res = await schema.execute('query { orders ping } ')
    assert res.errors is None, res.errors
    assert res.data == {"orders": ["custom"], "ping": "pong"}
    res = await schema.execute('mutation { addTag(label: "rush") }')
    assert res.errors is None, res.errors
    assert res.data["addTag"] == "RUSH"
    # untouched generated fields remain
    assert _field_type(schema, "Query", "orderRestful") == "OrderResult!"
    assert _field_type(schema, "Mutation", "addOrder") == "Order!"


def test_inline_beats_discovered(customs_dir):
    schema = build_schema(customs_dir_path=str(customs_dir))
    assert _field_type(schema, "Query", "vipCustomers") == "[Customer!]!"


def test_custom_resolver_source(customs_dir):
    def static_ping() -> str:
        return "static"

    class Static:
        def list_resolvers(self, kind):
            if kind == "query":
                return [("ping", strawberry.field(resolver=static_ping))]
            return []

    schema = build_schema(resolver_source=Static(), customs_dir_path=str(customs_dir))
    fields = schema._schema.get_type("Query").fields
    assert "ping" in fields
    # resolver_source wins over the directory
    assert _field_type(schema, "Query", "orders") == "[Order!]!"


async def test_inline_overrides_on_generated_names():
    schema = generate_schema(WidgetBase)
    assert _field_type(schema, "Query", "widgets") == "[Widget!]!"
    args = schema._schema.get_type("Query").fields["widgets"].args
    assert set(args) == {"id", "label", "limit", "offset", "order"}
    assert _field_type(schema, "Mutation", "addWidget") == "Int!"
    assert schema._schema.get_type("Mutation").fields["addWidget"].description == "inline field"
    touch = schema._schema.get_type("Mutation").fields["touchWidget"]
    assert str(touch.type) == "Widget"
    assert {name: str(a.type) for name, a in touch.args.items()} == {"Widget": "WidgetInput"}
    res = await schema.execute("mutation { addWidget }")
    assert res.errors is None, res.errors
    assert res.data == {"addWidget": 42}


def test_missing_customs_directory(tmp_path):
    with pytest.raises(CustomResolverError, match="does not exist"):
        build_schema(customs_dir_path=str(tmp_path / "missing"))


def test_module_without_resolver_export(tmp_path):
    _write(tmp_path, "query/broken.py", "value = 1\n")
    with pytest.raises(CustomResolverError, match="resolver"):
        build_schema(customs_dir_path=str(tmp_path))


def test_module_import_failure(tmp_path):
    _write(tmp_path, "mutation/boom.py", "import not_a_real_module_anywhere\n")
    with pytest.raises(CustomResolverError, match="Failed to import"):
        build_schema(customs_dir_path=str(tmp_path))


def test_invalid_inline_override():
    class OddBase(DeclarativeBase):
        pass

    class Gadget(OddBase):
        __tablename__ = "gadgets"
        __resolvers__ = {"query": {"gadgetCount": 3}}

        id = Column(Integer, primary_key=True)

    with pytest.raises(EntityDefinitionError, match="gadgetCount"):
        generate_schema(OddBase)


def test_merge_layers_priority():
    merged = merge_layers("query", {"a": 1, "b": 1}, {"b": 2, "c": 2}, {"c": 3})
    assert merged == {"a": 1, "b": 2, "c": 3}
