import time

import pytest

from reliability_tools.common import ReliabilitySettings
from testsuites.ui_testing.framework.smart_waits import (
    SmartWaits,
    StabilityConfig,
    WaitKind,
    WaitTimeout,
    boxes_match,
)
from testsuites.unit.fake_browser import FakePage


FAST_STABILITY = StabilityConfig(interval=0.01, required_samples=3, epsilon=1.0)


def box(x=10.0, y=20.0, width=100.0, height=40.0):
    return {"x": x, "y": y, "width": width, "height": height}


class FakeWaitProvider:
    def __init__(self, code):
        self.code = code
        self.calls = []

    async def suggest_wait_strategy(self, description, state):
        self.calls.append((description, state))
        return self.code


def make_waits(page, **kwargs):
    return SmartWaits(page, settings=ReliabilitySettings(), stability=FAST_STABILITY, **kwargs)


def test_boxes_match_uses_strict_epsilon():
    assert boxes_match(box(), box(x=10.9), 1.0)
    assert not boxes_match(box(), box(x=11.0), 1.0)
    assert not boxes_match(None, box(), 1.0)
    assert not boxes_match(box(), None, 1.0)


@pytest.mark.asyncio
async def test_wait_for_element_visible_succeeds():
    page = FakePage(visible=["#save"])
    waits = make_waits(page)

    await waits.wait_for_element(page.locator("#save"), state="visible", timeout=500)

    assert page.probes == [("#save", 500)]


@pytest.mark.asyncio
async def test_wait_for_element_timeout_raises_wait_timeout():
    page = FakePage()
    waits = make_waits(page)

    with pytest.raises(WaitTimeout) as exc_info:
        await waits.wait_for_element(page.locator("#missing"), timeout=50)

    assert exc_info.value.kind == WaitKind.ELEMENT_STATE
    assert exc_info.value.timeout_ms == 50
    assert exc_info.value.elapsed_ms >= 0


@pytest.mark.asyncio
async def test_wait_for_element_rejects_unknown_state():
    page = FakePage()
    with pytest.raises(ValueError):
        await make_waits(page).wait_for_element(page.locator("#x"), state="enabled")


@pytest.mark.asyncio
async def test_secondary_condition_failure_only_warns():
    page = FakePage(visible=["#save"])
    page.fail_functions = True
    waits = make_waits(page)

    await waits.wait_for_element(
        page.locator("#save"),
        timeout=100,
        secondary_conditions=["() => window.appReady === true", "url === '/dashboard'"],
    )

    assert ("wait_for_function", "() => window.appReady === true", 100) in page.calls
    assert ("wait_for_url", "/dashboard", 100) in page.calls


@pytest.mark.asyncio
async def test_suggested_wait_strategy_failure_does_not_fail_primary_wait():
    page = FakePage(visible=["#save"])
    page.network_idle = False
    provider = FakeWaitProvider("await page.wait_for_load_state('networkidle')")
    waits = make_waits(page, suggestion_provider=provider)

    await waits.wait_for_element(page.locator("#save"), timeout=100, use_ai=True, description="save button")

    assert provider.calls == [("save button", "visible")]
    assert page.calls[0][0] == "wait_for_load_state"


@pytest.mark.asyncio
async def test_stable_element_resolves_after_required_samples():
    page = FakePage(boxes={"#card": [box()]})
    waits = make_waits(page)
    locator = page.locator("#card")

    await waits.wait_for_element_stable(locator, timeout=1000)

    # one initial sample plus three consecutive matches
    assert locator.box_calls == 4


@pytest.mark.asyncio
async def test_stability_counter_resets_on_movement():
    page = FakePage(boxes={"#card": [box(), box(x=50), box(x=50), box(x=50), box(x=50)]})
    waits = make_waits(page)
    locator = page.locator("#card")

    await waits.wait_for_element_stable(locator, timeout=1000)

    assert locator.box_calls == 5


@pytest.mark.asyncio
async def test_missing_bounding_box_resets_stability_counter():
    page = FakePage(boxes={"#card": [None, None, box(), box(), box(), box()]})
    waits = make_waits(page)
    locator = page.locator("#card")

    await waits.wait_for_element_stable(locator, timeout=1000)

    assert locator.box_calls == 6


@pytest.mark.asyncio
async def test_moving_element_times_out():
    moving = [box(x=float(i * 5)) for i in range(200)]
    page = FakePage(boxes={"#spinner": moving})
    waits = make_waits(page)

    with pytest.raises(WaitTimeout) as exc_info:
        await waits.wait_for_element_stable(page.locator("#spinner"), timeout=60)

    assert exc_info.value.kind == WaitKind.STABLE
    assert exc_info.value.elapsed_ms < 1000


@pytest.mark.asyncio
async def test_network_idle_success_and_timeout():
    page = FakePage()
    waits = make_waits(page)

    await waits.wait_for_network_idle(timeout=200)
    assert page.calls[-1] == ("wait_for_load_state", "networkidle", 200)

    page.network_idle = False
    with pytest.raises(WaitTimeout) as exc_info:
        await waits.wait_for_network_idle(timeout=200)
    assert exc_info.value.kind == WaitKind.NETWORK_IDLE


@pytest.mark.asyncio
async def test_wait_for_response_returns_response_or_raises():
    page = FakePage()
    waits = make_waits(page)

    response = await waits.wait_for_response("**/api/users", timeout=300)
    assert response["status"] == 200

    with pytest.raises(WaitTimeout):
        await waits.wait_for_response("**/missing", timeout=300)


@pytest.mark.asyncio
async def test_animations_settle():
    page = FakePage()
    assert await make_waits(page).wait_for_animations(timeout=500) is True


@pytest.mark.asyncio
async def test_stuck_animations_resolve_with_warning_instead_of_failing():
    page = FakePage()
    page.animation_delay = 1.0

    assert await make_waits(page).wait_for_animations(timeout=50) is False


@pytest.mark.asyncio
async def test_custom_sync_predicate_polled_until_true():
    calls = {"count": 0}

    def ready():
        calls["count"] += 1
        return calls["count"] >= 3

    await make_waits(FakePage()).wait_for_condition(ready, timeout=2000)

    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_custom_async_predicate_errors_count_as_not_yet():
    calls = {"count": 0}

    async def ready():
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("element detached")
        return True

    await make_waits(FakePage()).wait_for_condition(ready, timeout=2000)

    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_custom_predicate_never_true_times_out():
    with pytest.raises(WaitTimeout) as exc_info:
        await make_waits(FakePage()).wait_for_condition(lambda: False, timeout=150)

    assert exc_info.value.kind == WaitKind.CUSTOM
    assert exc_info.value.elapsed_ms >= 50


@pytest.mark.asyncio
async def test_url_expression_maps_to_wait_for_url():
    page = FakePage()
    waits = make_waits(page)

    await waits.wait_for_condition('url == "https://app.example.com/home"', timeout=500)
    await waits.wait_for_condition("document.readyState === 'complete'", timeout=500)

    assert page.calls == [
        ("wait_for_url", "https://app.example.com/home", 500),
        ("wait_for_function", "document.readyState === 'complete'", 500),
    ]


@pytest.mark.asyncio
async def test_failing_expression_raises_wait_timeout():
    page = FakePage()
    page.fail_functions = True

    with pytest.raises(WaitTimeout):
        await make_waits(page).wait_for_condition("window.loaded", timeout=100)


@pytest.mark.asyncio
async def test_wait_for_all_conditions():
    state = {"a": False}

    def flip():
        state["a"] = True
        return True

    await make_waits(FakePage()).wait_for_all_conditions([flip, lambda: state["a"]], timeout=1000)

    with pytest.raises(WaitTimeout):
        await make_waits(FakePage()).wait_for_all_conditions([lambda: True, lambda: False], timeout=100)


@pytest.mark.asyncio
async def test_await_condition_dispatches_by_kind():
    page = FakePage(visible=["#toast"], boxes={"#toast": [box()]})
    waits = make_waits(page)

    await waits.await_condition(page.locator("#toast"), WaitKind.ELEMENT_STATE, timeout=100, state="visible")
    await waits.await_condition(page.locator("#toast"), "stable", timeout=1000)
    await waits.await_condition(None, WaitKind.NETWORK_IDLE, timeout=100)
    await waits.await_condition("**/api/save", WaitKind.RESPONSE, timeout=100)
    await waits.await_condition(None, WaitKind.ANIMATIONS, timeout=100)
    await waits.await_condition(lambda: True, WaitKind.CUSTOM, timeout=100)

    names = [call[0] for call in page.calls]
    assert names == ["wait_for_load_state", "wait_for_response", "evaluate"]


@pytest.mark.asyncio
async def test_slow_bounding_box_is_bounded_by_stability_timeout():
    page = FakePage(boxes={"#panel": [box()]})
    page.box_delay = 1.0
    waits = make_waits(page)
    started = time.monotonic()

    with pytest.raises(WaitTimeout) as exc_info:
        await waits.wait_for_element_stable(page.locator("#panel"), timeout=200)

    assert time.monotonic() - started < 0.5
    assert exc_info.value.kind == WaitKind.STABLE
    assert all(0 < t <= 200 for t in page.box_timeouts)


@pytest.mark.asyncio
async def test_bounding_box_samples_receive_remaining_time():
    page = FakePage(boxes={"#card": [box()]})

    await make_waits(page).wait_for_element_stable(page.locator("#card"), timeout=1000)

    assert len(page.box_timeouts) == 4
    assert page.box_timeouts == sorted(page.box_timeouts, reverse=True)
    assert page.box_timeouts[0] <= 1000
