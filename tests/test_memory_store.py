import pytest

from vstream.errors import GroupExistsError, NotFoundKeyError
from vstream.store.memory import TRIM_SLACK, MemoryLogStore, parse_entry_id


@pytest.mark.asyncio
async def test_ids_are_monotonic():
    store = MemoryLogStore()
    ids = [await store.append_with_trim("orders", {"value": str(i)}) for i in range(50)]
    assert [parse_entry_id(i) for i in ids] == sorted(parse_entry_id(i) for i in ids)
    assert len(set(ids)) == 50


@pytest.mark.asyncio
async def test_approximate_trim_removes_whole_blocks_only():
    store = MemoryLogStore()
    for i in range(TRIM_SLACK + 15):
        await store.append_with_trim("orders", {"value": str(i)}, max_len=10)
    # One full block was dropped once the excess reached TRIM_SLACK
    assert await store.length("orders") == 15


@pytest.mark.asyncio
async def test_exact_trim():
    store = MemoryLogStore()
    for i in range(30):
        await store.append_with_trim("orders", {"value": str(i)}, max_len=10, approximate=False)
    assert await store.length("orders") == 10


@pytest.mark.asyncio
async def test_create_group_twice_is_busygroup():
    store = MemoryLogStore()
    await store.create_group("orders", "g1")
    with pytest.raises(GroupExistsError):
        await store.create_group("orders", "g1")


@pytest.mark.asyncio
async def test_create_group_without_mkstream_needs_the_key():
    store = MemoryLogStore()
    with pytest.raises(NotFoundKeyError):
        await store.create_group("orders", "g1", mkstream=False)


@pytest.mark.asyncio
async def test_group_from_tail_skips_existing_entries():
    store = MemoryLogStore()
    await store.append_with_trim("orders", {"value": "old"})
    await store.create_group("orders", "g1", start_id="$")
    new_id = await store.append_with_trim("orders", {"value": "new"})

    assert await store.group_read("orders", "g1", "c1", 10) == [(new_id, {"value": "new"})]


@pytest.mark.asyncio
async def test_read_on_deleted_key_reports_it():
    store = MemoryLogStore()
    await store.create_group("orders", "g1")
    assert await store.delete_key("orders") is True

    with pytest.raises(NotFoundKeyError) as excinfo:
        await store.group_read("orders", "g1", "c1", 10)

    assert excinfo.value.key == "orders"
    assert "No such key 'orders'" in str(excinfo.value)


@pytest.mark.asyncio
async def test_history_read_returns_own_pending_entries():
    store = MemoryLogStore()
    await store.create_group("orders", "g1")
    first = await store.append_with_trim("orders", {"value": "a"})
    second = await store.append_with_trim("orders", {"value": "b"})
    await store.group_read("orders", "g1", "c1", 1)
    await store.group_read("orders", "g1", "c2", 1)

    assert [e[0] for e in await store.group_read("orders", "g1", "c1", 10, start_id="0")] == [first]
    assert [e[0] for e in await store.group_read("orders", "g1", "c2", 10, start_id="0")] == [second]

    assert await store.acknowledge("orders", "g1", first, second, "9-9") == 2
    assert await store.pending_count("orders", "g1") == 0
