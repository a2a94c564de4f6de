"""
Player task cache replacement and flags.
"""

import threading
from datetime import datetime, timezone

from questcycle.engine.cache import PlayerTaskCache
from questcycle.models import ActiveTask, TaskTemplate

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def task(key: str, category: str = "daily", player: str = "alice") -> ActiveTask:
    return ActiveTask(player, TaskTemplate(key=key, type="break"), category, NOW)


def test_replace_player_swaps_all_categories():
    cache = PlayerTaskCache()
    cache.replace_player("alice", {"daily": [task("a")], "weekly": [task("w", "weekly")]})
    cache.replace_player("alice", {"daily": [task("b")]})

    assert [t.task_key for t in cache.get("alice")] == ["b"]
    assert cache.get("alice", "weekly") == []
    assert cache.is_loaded("alice")


def test_replace_category_keeps_other_categories():
    cache = PlayerTaskCache()
    cache.replace_player("alice", {"daily": [task("a")], "weekly": [task("w", "weekly")]})
    cache.replace_category("alice", "daily", [task("c")])

    assert sorted(t.task_key for t in cache.get("alice")) == ["c", "w"]


def test_add_remove_and_find():
    cache = PlayerTaskCache()
    cache.replace_player("alice", {"daily": []})
    cache.add(task("a"))
    cache.add(task("b"))

    assert cache.find("alice", "b").task_key == "b"
    assert cache.find("alice", "b", NOW) is not None
    assert [t.task_key for t in cache.remove("alice", "daily", "a")] == ["a"]
    assert cache.remove("alice", "daily", "missing") == []
    assert cache.find("alice", "a") is None


def test_category_notified_flag_is_test_and_set():
    cache = PlayerTaskCache()
    cache.replace_player("alice", {"daily": [task("a")]})

    assert cache.mark_category_notified("alice", "daily")
    assert not cache.mark_category_notified("alice", "daily")

    cache.replace_category("alice", "daily", [task("b")])
    assert cache.mark_category_notified("alice", "daily")

    cache.replace_player("alice", {"daily": [task("c")]})
    assert cache.mark_category_notified("alice", "daily")


def test_drop_player():
    cache = PlayerTaskCache()
    cache.replace_player("alice", {"daily": [task("a")]})
    cache.replace_player("bob", {"daily": [task("a", player="bob")]})
    cache.drop_player("alice")

    assert not cache.is_loaded("alice")
    assert cache.players() == ["bob"]
    assert len(cache) == 1


def test_readers_never_see_a_partial_player():
    cache = PlayerTaskCache()
    full = {"daily": [task("a"), task("b"), task("c")]}
    cache.replace_player("alice", full)
    stop = threading.Event()
    observed = []

    def reader():
        while not stop.is_set():
            observed.append(len(cache.get("alice")))

    thread = threading.Thread(target=reader)
    thread.start()
    for _ in range(500):
        cache.replace_player("alice", {"daily": [task("a"), task("b"), task("c")]})
    stop.set()
    thread.join()

    assert set(observed) == {3}
