from __future__ import annotations

import asyncio

import pytest

from conftest import wait_for
from rsvpdesk.remote import BlobStore, PushIdGenerator, RemoteStore, normalize_path


def test_normalize_path_strips_slashes_and_rejects_traversal():
    assert normalize_path("/rsvps/") == "rsvps"
    assert normalize_path("settings/landingPage") == "settings/landingPage"
    with pytest.raises(ValueError):
        normalize_path("")
    with pytest.raises(ValueError):
        normalize_path("rsvps/../settings")
    with pytest.raises(ValueError):
        normalize_path("rsvps//abc")


def test_push_ids_follow_creation_order_within_one_millisecond():
    generate = PushIdGenerator(clock=lambda: 1_700_000_000.0)
    keys = [generate() for _ in range(50)]
    assert all(len(key) == 20 for key in keys)
    assert keys == sorted(keys)
    assert len(set(keys)) == 50


def test_push_ids_order_across_clock_ticks():
    ticks = iter([1.0, 1.0, 2.0, 1.5])
    generate = PushIdGenerator(clock=lambda: next(ticks))
    keys = [generate() for _ in range(4)]
    assert keys == sorted(keys)


def test_push_and_get_collection():
    async def scenario():
        store = RemoteStore()
        first = await store.push("rsvps", {"name": "Ana", "guests": 2})
        second = await store.push("/rsvps", {"name": "Budi", "guests": 1})
        snapshot = await store.get("rsvps")
        single = await store.get(f"rsvps/{second}")
        return first, second, snapshot, single

    first, second, snapshot, single = asyncio.run(scenario())
    assert [key for key, _ in snapshot.children()] == [first, second]
    assert snapshot.val()[first] == {"name": "Ana", "guests": 2}
    assert single.key == second
    assert single.val() == {"name": "Budi", "guests": 1}


def test_get_missing_path_is_none():
    snapshot = asyncio.run(RemoteStore().get("settings/landingPage"))
    assert snapshot.exists() is False
    assert snapshot.val() is None
    assert snapshot.children() == []


def test_set_replaces_whole_value_and_nested_writes_merge():
    async def scenario():
        store = RemoteStore()
        await store.set("settings/landingPage", {"title": "Old", "extra": 1})
        await store.set("settings/landingPage", {"title": "New"})
        replaced = await store.get("settings/landingPage")
        await store.set("settings/landingPage/title", "Nested")
        nested = await store.get("settings/landingPage")
        title = await store.get("settings/landingPage/title")
        parent = await store.get("settings")
        return replaced, nested, title, parent

    replaced, nested, title, parent = asyncio.run(scenario())
    assert replaced.val() == {"title": "New"}
    assert nested.val() == {"title": "Nested"}
    assert title.val() == "Nested"
    assert parent.val() == {"landingPage": {"title": "Nested"}}


def test_remove_deletes_subtree_with_underscores_in_keys():
    async def scenario():
        store = RemoteStore()
        await store.set("rsvps/a_b", {"name": "Ana"})
        await store.set("rsvpsX/other", {"name": "sibling"})
        await store.push("rsvps", {"name": "pushed"})
        await store.remove("rsvps")
        return await store.get("rsvps"), await store.get("rsvpsX")

    removed, sibling = asyncio.run(scenario())
    assert removed.val() is None
    assert sibling.val() == {"other": {"name": "sibling"}}


def test_set_none_and_empty_mapping_remove():
    async def scenario():
        store = RemoteStore()
        await store.set("settings/landingPage", {"title": "x"})
        await store.set("settings/landingPage", {})
        return await store.get("settings/landingPage")

    assert asyncio.run(scenario()).val() is None


def test_on_value_delivers_initial_and_follow_up_snapshots():
    async def scenario():
        store = RemoteStore()
        seen: list = []
        unsubscribe = store.on_value("rsvps", lambda snap: seen.append(snap.val()))
        await wait_for(lambda: len(seen) == 1)
        key = await store.push("rsvps", {"name": "Ana", "guests": 1})
        await wait_for(lambda: len(seen) == 2)
        await store.set("settings/landingPage", {"title": "Unrelated"})
        await asyncio.sleep(0.05)
        unsubscribe()
        unsubscribe()
        await store.remove("rsvps")
        await asyncio.sleep(0.05)
        return seen, key, store.subscription_count

    seen, key, remaining = asyncio.run(scenario())
    assert seen[0] is None
    assert seen[1] == {key: {"name": "Ana", "guests": 1}}
    assert len(seen) == 2
    assert remaining == 0


def test_parent_subscription_sees_child_writes():
    async def scenario():
        store = RemoteStore()
        seen: list = []
        store.on_value("settings", lambda snap: seen.append(snap.val()))
        await wait_for(lambda: len(seen) == 1)
        await store.set("settings/landingPage", {"title": "Hello"})
        await wait_for(lambda: len(seen) == 2)
        store.off("settings")
        return seen, store.subscription_count

    seen, remaining = asyncio.run(scenario())
    assert seen[-1] == {"landingPage": {"title": "Hello"}}
    assert remaining == 0


def test_read_failures_reach_the_error_callback(monkeypatch):
    async def scenario():
        store = RemoteStore()

        def broken_read(path):
            raise RuntimeError("permission denied")

        monkeypatch.setattr(store, "_read", broken_read)
        errors: list = []
        store.on_value("rsvps", lambda snap: None, errors.append)
        await wait_for(lambda: len(errors) == 1)
        return errors

    errors = asyncio.run(scenario())
    assert isinstance(errors[0], RuntimeError)


def test_blob_store_is_write_once(tmp_path):
    async def scenario():
        blobs = BlobStore(tmp_path, base_url="https://rsvp.example.org/")
        stored = await blobs.upload("backgrounds/1_hall.jpg", b"jpeg", "image/jpeg")
        with pytest.raises(FileExistsError):
            await blobs.upload("backgrounds/1_hall.jpg", b"other", "image/jpeg")
        return blobs, stored

    blobs, stored = asyncio.run(scenario())
    assert stored == "backgrounds/1_hall.jpg"
    assert (tmp_path / "backgrounds" / "1_hall.jpg").read_bytes() == b"jpeg"
    assert blobs.exists(stored)
    assert (
        blobs.download_url(stored)
        == "https://rsvp.example.org/media/backgrounds/1_hall.jpg"
    )


def test_blob_store_rejects_escaping_paths(tmp_path):
    blobs = BlobStore(tmp_path / "media", base_url="http://localhost")
    with pytest.raises(ValueError):
        asyncio.run(blobs.upload("../outside.txt", b"x"))


def test_disambiguated_name_prefixes_time_and_sanitizes():
    name = BlobStore.disambiguated_name("../My Hall (1).JPG", now=1_700_000_000.5)
    assert name == "1700000000500_My_Hall_1_.JPG"
    with_extension = BlobStore.disambiguated_name("hall", "image/png", now=1.0)
    assert with_extension == "1000_hall.png"
