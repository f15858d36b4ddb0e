"""Tests for RenderService wiring: force dispatch, health report, background loops."""
import asyncio

import httpx
import pytest

from backend.app.renders.errors import FeedError
from backend.app.renders.service import ListingNotFound

from conftest import trade_ad


@pytest.mark.asyncio
async def test_force_dispatch_fetches_unknown_listing(make_service, feed, farm, cache):
    feed.serve_ids(11, 12)
    svc = make_service()

    result = await svc.force_dispatch("12")

    assert result.status == "rendered"
    assert farm.payloads == [trade_ad(12)]
    assert cache.exists("12")
    assert len(feed.requests) == 1


@pytest.mark.asyncio
async def test_force_dispatch_uses_listing_from_last_poll(make_service, feed, farm):
    feed.serve_ids(11)
    svc = make_service()
    await svc.poller.poll_once()
    await svc.dispatcher.drain()
    requests_after_poll = len(feed.requests)

    result = await svc.force_dispatch("11")

    assert result.status == "rendered"
    assert len(feed.requests) == requests_after_poll


@pytest.mark.asyncio
async def test_force_dispatch_unknown_id(make_service, feed):
    feed.serve_ids(1)
    with pytest.raises(ListingNotFound):
        await make_service().force_dispatch("999")


@pytest.mark.asyncio
async def test_force_dispatch_feed_down(make_service, feed):
    feed.serve(httpx.ConnectError("down"))
    with pytest.raises(FeedError):
        await make_service().force_dispatch("1")


@pytest.mark.asyncio
async def test_poll_then_render_end_to_end(make_service, feed, farm, cache):
    feed.serve_ids(1, 2, 3)
    farm.render["w1"] = 367
    svc = make_service(["w1", "w2"])

    result = await svc.poller.poll_once()
    await svc.dispatcher.drain()

    assert sorted(result.dispatched) == ["1", "2", "3"]
    assert cache.count() == 3
    assert len(svc.tracker) == 0


@pytest.mark.asyncio
async def test_health_report(make_service, farm, cache):
    farm.health.update({"w1": 256, "w2": 256, "w3": "timeout"})
    cache.put("1", b"x")
    svc = make_service()
    svc.tracker.try_add("42")

    report = await svc.health_report()

    assert report.workers == 3
    assert report.healthyWorkers == 2
    assert report.ramUsage == 512
    assert report.workersUsage == pytest.approx(50.0)
    assert report.processing == 1
    assert report.cachedImages == 1
    assert report.managerRam > 0
    assert report.totalSystemRam > 0


@pytest.mark.asyncio
async def test_health_report_without_healthy_workers(make_service, farm):
    farm.health["w1"] = "timeout"
    report = await make_service(["w1"]).health_report()
    assert report.healthyWorkers == 0
    assert report.workersUsage == 0


@pytest.mark.asyncio
async def test_start_polls_eagerly_and_stop_cancels(make_service, feed, cache):
    feed.serve_ids(7)
    svc = make_service()

    svc.start()
    try:
        for _ in range(200):
            if cache.exists("7"):
                break
            await asyncio.sleep(0.01)
    finally:
        await svc.stop()

    assert cache.exists("7")
    assert svc._loops == []
