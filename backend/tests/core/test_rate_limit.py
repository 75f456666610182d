import asyncio

import pytest

from backend.app.core.rate_limit import RequestPacer


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_first_acquire_does_not_wait(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    pacer = RequestPacer(0.15, clock=FakeClock())

    await pacer.acquire()

    assert sleeps == []


@pytest.mark.asyncio
async def test_second_acquire_waits_out_the_delay(monkeypatch):
    clock = FakeClock()
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        clock.now += seconds

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    pacer = RequestPacer(0.15, clock=clock)

    await pacer.acquire()
    clock.now += 0.05
    await pacer.acquire()

    assert sleeps == [pytest.approx(0.10)]


@pytest.mark.asyncio
async def test_zero_delay_never_sleeps(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    pacer = RequestPacer(0)

    await pacer.acquire()
    await pacer.acquire()

    assert sleeps == []
