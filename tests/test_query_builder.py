import pytest
import sqlalchemy as sa

from kiln import QueryEngine, SqlEngine, create_engine


@pytest.fixture
async def raw_engine(db_url):
    """Engine without metadata: every table is addressed by name only."""
    engine = create_engine(db_url)
    async with engine.engine.begin() as conn:
        await conn.exec_driver_sql(
            "CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT, qty INTEGER)"
        )
    yield engine
    await engine.dispose()


def test_engine_satisfies_protocol(raw_engine):
    assert isinstance(raw_engine, SqlEngine)
    assert isinstance(raw_engine, QueryEngine)
    assert not raw_engine.in_transaction


def test_where_collects_conditions(raw_engine):
    query = raw_engine.select_from("items").select_all().where("qty", ">=", 18)
    assert query.where_clause == [("qty", ">=", 18)]


def test_unsupported_operator(raw_engine):
    with pytest.raises(ValueError):
        raw_engine.select_from("items").where("qty", "~", 1)


def test_invalid_order_direction(raw_engine):
    with pytest.raises(ValueError):
        raw_engine.select_from("items").order_by("qty", "sideways")


def test_chaining_and_compile(raw_engine):
    query = (
        raw_engine.select_from("items")
        .select_all()
        .where("qty", ">", 1)
        .order_by("name", "desc")
        .limit(10)
        .offset(5)
    )
    assert query._limit == 10
    assert query._offset == 5
    sql = str(query.compile())
    assert "FROM items" in sql
    assert "ORDER BY name DESC" in sql


def test_unknown_column_on_typed_table(engine):
    with pytest.raises(ValueError):
        engine.select_from("users").where("nickname", "=", "x").compile()


@pytest.mark.asyncio
async def test_insert_select_update_delete(raw_engine):
    first = await raw_engine.insert_into("items").values({"name": "bolt", "qty": 3}).execute_take_first()
    assert first.insert_id == 1
    assert first.num_inserted_rows == 1

    results = await raw_engine.insert_into("items").values(
        {"name": "nut", "qty": 10}, {"name": "gear", "qty": 1}
    ).execute()
    assert [r.insert_id for r in results] == [2, 3]

    rows = await raw_engine.select_from("items").select_all().order_by("qty", "desc").execute()
    assert [r["name"] for r in rows] == ["nut", "bolt", "gear"]

    few = await raw_engine.select_from("items").select_all().where("qty", "<", 5).execute()
    assert {r["name"] for r in few} == {"bolt", "gear"}

    picked = await raw_engine.select_from("items").select("name").where("id", "in", [1, 3]).execute()
    assert sorted(r["name"] for r in picked) == ["bolt", "gear"]

    top = await raw_engine.select_from("items").select_all().order_by("qty").execute_take_first()
    assert top["name"] == "gear"

    updated = await raw_engine.update_table("items").set({"qty": 0}).where("name", "like", "%t").execute()
    assert updated.num_updated_rows == 2

    deleted = await raw_engine.delete_from("items").where("qty", "=", 0).execute()
    assert deleted.num_deleted_rows == 2

    remaining = await raw_engine.select_from("items").select_all().execute()
    assert [r["name"] for r in remaining] == ["gear"]


@pytest.mark.asyncio
async def test_empty_update_is_a_no_op(raw_engine):
    result = await raw_engine.update_table("items").set({}).where("id", "=", 1).execute()
    assert result.num_updated_rows == 0


@pytest.mark.asyncio
async def test_missing_row(raw_engine):
    row = await raw_engine.select_from("items").select_all().where("id", "=", 99).execute_take_first()
    assert row is None


@pytest.mark.asyncio
async def test_transaction_commit_and_rollback(raw_engine):
    async with raw_engine.transaction() as trx:
        assert trx.in_transaction
        await trx.insert_into("items").values({"name": "kept", "qty": 1}).execute_take_first()

    with pytest.raises(RuntimeError):
        async with raw_engine.transaction() as trx:
            await trx.insert_into("items").values({"name": "lost", "qty": 1}).execute_take_first()
            raise RuntimeError("rollback")

    rows = await raw_engine.select_from("items").select_all().execute()
    assert [r["name"] for r in rows] == ["kept"]


@pytest.mark.asyncio
async def test_savepoint_rollback(raw_engine):
    async with raw_engine.transaction() as trx:
        await trx.insert_into("items").values({"name": "outer", "qty": 1}).execute_take_first()
        with pytest.raises(RuntimeError):
            async with trx.transaction() as nested:
                await nested.insert_into("items").values({"name": "inner", "qty": 1}).execute_take_first()
                raise RuntimeError("savepoint")

    rows = await raw_engine.select_from("items").select_all().execute()
    assert [r["name"] for r in rows] == ["outer"]


@pytest.mark.asyncio
async def test_typed_table_round_trip(engine):
    await engine.insert_into("users").values({"name": "Ada", "email": "ada@example.com"}).execute_take_first()
    row = await engine.select_from("users").select_all().execute_take_first()
    assert row == {"id": 1, "name": "Ada", "email": "ada@example.com"}
    assert isinstance(engine.table("users"), sa.Table)
