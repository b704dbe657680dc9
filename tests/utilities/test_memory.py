# tests/utilities/test_memory.py
from sheetflow.utilities import memory
from sheetflow.utilities.memory import GcTicker


def test_collects_once_per_interval(monkeypatch):
    calls = []
    monkeypatch.setattr(memory.gc, "collect", lambda: calls.append(1) or 0)

    ticker = GcTicker(interval=100)
    assert not ticker.tick(60)
    assert ticker.tick(60)
    assert not ticker.tick(10)
    assert ticker.tick(250)

    assert ticker.processed == 380
    assert ticker.collections == 2
    assert len(calls) == 2


def test_disabled_interval(monkeypatch):
    monkeypatch.setattr(memory.gc, "collect", lambda: 0)
    ticker = GcTicker(interval=0)
    assert not ticker.tick(1_000_000)
    assert ticker.collections == 0
