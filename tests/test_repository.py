import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from kiln import ContextMissingError, DataRepository, get_current_cache, run


@pytest.fixture
def users(registry) -> DataRepository:
    return registry.get("User").repository


async def seed(users, *names):
    rows = []
    for name in names:
        rows.append(await users.create({"name": name, "email": f"{name.lower()}@example.com"}))
    return rows


@pytest.mark.asyncio
async def test_create_returns_stored_row(engine, users):
    async def body():
        return await users.create({"name": "Ada", "email": "ada@example.com"})

    row = await run(engine, body)
    assert row == {"id": 1, "name": "Ada", "email": "ada@example.com"}


@pytest.mark.asyncio
async def test_create_prefers_supplied_id(engine, users):
    async def body():
        return await users.create({"id": 40, "name": "Bob", "email": "bob@example.com"})

    row = await run(engine, body)
    assert row["id"] == 40


@pytest.mark.asyncio
async def test_find_by_id_is_cached(engine, users, selects):
    async def body():
        await seed(users, "Ada")
        before = len(selects())
        first = await users.find_by_id(1)
        second = await users.find_by_id(1)
        return first, second, len(selects()) - before

    first, second, queries = await run(engine, body)
    assert first == second == {"id": 1, "name": "Ada", "email": "ada@example.com"}
    # create() already read the row back and cached it
    assert queries == 0


@pytest.mark.asyncio
async def test_missing_id_returns_none(engine, users):
    async def body():
        return await users.find_by_id(999)

    assert await run(engine, body) is None


@pytest.mark.asyncio
async def test_same_tick_lookups_share_one_query(engine, users, statements, selects):
    """N find_by_id calls in one tick become a single IN query with distinct ids"""

    async def body():
        await seed(users, "Ada", "Bob", "Cy")
        get_current_cache().clear()
        statements.clear()
        return await asyncio.gather(
            users.find_by_id(3), users.find_by_id(1), users.find_by_id(3), users.find_by_id(7)
        )

    three, one, three_again, missing = await run(engine, body)

    assert len(selects()) == 1
    query = selects()[0]
    assert " IN " in query.upper()
    assert query.count("?") == 3
    assert three["name"] == "Cy"
    assert one["name"] == "Ada"
    assert three_again is three
    assert missing is None


@pytest.mark.asyncio
async def test_batch_function_receives_deduplicated_keys(engine, users):
    async def body():
        await seed(users, "Ada", "Bob")
        get_current_cache().clear()
        with patch.object(users, "_select_by_ids", wraps=users._select_by_ids) as spy:
            await asyncio.gather(users.find_by_id(2), users.find_by_id(1), users.find_by_id(2))
        return spy

    spy = await run(engine, body)
    spy.assert_awaited_once()
    _, ids, id_field = spy.await_args.args
    assert ids == [2, 1]
    assert id_field == "id"


@pytest.mark.asyncio
async def test_find_by_ids_preserves_order(engine, users):
    async def body():
        await users.create({"id": 1, "name": "One", "email": "one@example.com"})
        await users.create({"id": 3, "name": "Three", "email": "three@example.com"})
        return await users.find_by_ids([3, 2, 1])

    three, two, one = await run(engine, body)
    assert three["name"] == "Three"
    assert two is None
    assert one["name"] == "One"


@pytest.mark.asyncio
async def test_find_by_ids_empty(engine, users, selects):
    async def body():
        return await users.find_by_ids([])

    assert await run(engine, body) == []
    assert selects() == []


@pytest.mark.asyncio
async def test_find_by_non_primary_column(engine, users):
    async def body():
        await seed(users, "Ada")
        row = await users.find_by_id("ada@example.com", "email")
        await users.update(1, {"name": "Ada L"})
        updated = await users.find_by_id("ada@example.com", "email")
        return row, updated

    row, updated = await run(engine, body)
    assert row["name"] == "Ada"
    assert updated["name"] == "Ada L"


@pytest.mark.asyncio
async def test_find_with_filters(engine, users):
    async def body():
        await seed(users, "Ada", "Bob", "Cy")
        everyone = await users.find()
        bob = await users.find({"name": "Bob"})
        some = await users.find({"id": [1, 3]})
        return everyone, bob, some

    everyone, bob, some = await run(engine, body)
    assert [r["name"] for r in everyone] == ["Ada", "Bob", "Cy"]
    assert [r["id"] for r in bob] == [2]
    assert sorted(r["id"] for r in some) == [1, 3]


@pytest.mark.asyncio
async def test_find_is_cached_until_a_write(engine, users, selects):
    async def body():
        await seed(users, "Ada")
        first = await users.find()
        before = len(selects())
        again = await users.find()
        cached_queries = len(selects()) - before
        await seed(users, "Bob")
        after_create = await users.find()
        return first, again, cached_queries, after_create

    first, again, cached_queries, after_create = await run(engine, body)
    assert again is first
    assert cached_queries == 0
    assert len(after_create) == 2


@pytest.mark.asyncio
async def test_cached_miss_is_dropped_when_the_id_is_inserted(engine, users):
    async def body():
        assert await users.find_by_id(5) is None
        await users.create({"id": 5, "name": "Eve", "email": "eve@example.com"})
        return await users.find_by_id(5)

    row = await run(engine, body)
    assert row["name"] == "Eve"


@pytest.mark.asyncio
async def test_update_invalidates_outside_transaction(engine, users):
    async def body():
        await seed(users, "Ada")
        await users.find_by_id(1)
        result = await users.update(1, {"name": "Grace"})
        return result, await users.find_by_id(1)

    result, row = await run(engine, body)
    assert result.num_updated_rows == 1
    assert row["name"] == "Grace"


@pytest.mark.asyncio
async def test_delete_invalidates_outside_transaction(engine, users):
    async def body():
        await seed(users, "Ada")
        await users.find_by_id(1)
        result = await users.delete(1)
        return result, await users.find_by_id(1), await users.find()

    result, row, rows = await run(engine, body)
    assert result.num_deleted_rows == 1
    assert row is None
    assert rows == []


@pytest.mark.asyncio
async def test_failed_batch_caches_nothing(engine, users):
    async def body():
        failing = AsyncMock(side_effect=RuntimeError("connection lost"))
        with patch.object(users, "_select_by_ids", failing):
            results = await asyncio.gather(
                users.find_by_id(1), users.find_by_id(2), return_exceptions=True
            )
        return results, len(get_current_cache())

    results, cached = await run(engine, body)
    assert [type(r) for r in results] == [RuntimeError, RuntimeError]
    assert cached == 0


@pytest.mark.asyncio
async def test_find_by_id_without_context_raises_before_querying(engine, users, statements):
    with pytest.raises(ContextMissingError):
        await users.find_by_id(1)
    with pytest.raises(ContextMissingError):
        await users.create({"name": "Ada", "email": "ada@example.com"})
    assert statements == []


@pytest.mark.asyncio
async def test_separate_runs_do_not_share_cache(engine, users, selects):
    async def create():
        await seed(users, "Ada")

    async def read():
        return await users.find_by_id(1)

    await run(engine, create)
    before = len(selects())
    await run(engine, read)
    await run(engine, read)
    assert len(selects()) - before == 2


@pytest.mark.asyncio
async def test_update_by_unique_column_invalidates_cached_reads(engine, users):
    async def body():
        await seed(users, "Ada")
        await users.find_by_id(1)
        await users.find({"name": "Ada"})
        await users.find_by_id("ada@example.com", "email")
        result = await users.update("ada@example.com", {"name": "Alice"}, id_field="email")
        return (
            result,
            await users.find_by_id(1),
            await users.find({"name": "Ada"}),
            await users.find_by_id("ada@example.com", "email"),
        )

    result, by_id, by_name, by_email = await run(engine, body)
    assert result.num_updated_rows == 1
    assert by_id["name"] == "Alice"
    assert by_name == []
    assert by_email["name"] == "Alice"


@pytest.mark.asyncio
async def test_delete_by_unique_column_invalidates_cached_reads(engine, users):
    async def body():
        await seed(users, "Bob")
        await users.find_by_id(1)
        await users.find()
        result = await users.delete("bob@example.com", id_field="email")
        return result, await users.find_by_id(1), await users.find()

    result, row, rows = await run(engine, body)
    assert result.num_deleted_rows == 1
    assert row is None
    assert rows == []


@pytest.mark.asyncio
async def test_create_read_back_by_unique_column(engine, users):
    async def body():
        assert await users.find_by_id("zoe@example.com", "email") is None
        assert await users.find_by_id(1) is None
        created = await users.create(
            {"name": "Zoe", "email": "zoe@example.com"}, id_field="email"
        )
        return created, await users.find_by_id(1)

    created, by_id = await run(engine, body)
    assert created == {"id": 1, "name": "Zoe", "email": "zoe@example.com"}
    assert by_id == created
