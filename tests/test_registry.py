"""Tests for the connection registry."""

import threading

import pytest

from stdio2tcp.registry import ConnectionRegistry


class TestRegistry:
    def test_put_get_remove(self):
        reg = ConnectionRegistry()
        conn = object()
        reg.put("5000", conn)
        assert reg.get("5000") is conn
        assert "5000" in reg
        assert len(reg) == 1
        assert reg.remove("5000") is conn
        assert reg.get("5000") is None
        assert "5000" not in reg

    def test_get_missing_returns_none(self):
        assert ConnectionRegistry().get("nope") is None

    def test_remove_missing_is_noop(self):
        assert ConnectionRegistry().remove("nope") is None

    def test_put_live_id_twice_raises(self):
        reg = ConnectionRegistry()
        reg.put("5000", object())
        with pytest.raises(KeyError):
            reg.put("5000", object())

    def test_id_reusable_after_removal(self):
        reg = ConnectionRegistry()
        reg.put("5000", object())
        reg.remove("5000")
        reg.put("5000", "again")
        assert reg.get("5000") == "again"

    def test_put_unique_suffixes_live_ids(self):
        reg = ConnectionRegistry()
        assert reg.put_unique("5000", "a") == "5000"
        assert reg.put_unique("5000", "b") == "5000-1"
        assert reg.put_unique("5000", "c") == "5000-2"
        assert sorted(reg.ids()) == ["5000", "5000-1", "5000-2"]

    def test_concurrent_access(self):
        reg = ConnectionRegistry()
        errors = []

        def worker(n):
            try:
                for i in range(200):
                    conn_id = f"{n}-{i}"
                    reg.put(conn_id, i)
                    assert reg.get(conn_id) == i
                    assert reg.remove(conn_id) == i
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert len(reg) == 0
