from __future__ import annotations

import asyncio

import pytest

from conftest import ControlledLoader, EventRecorder, settle
from tierloader import (
    ConfigurationError,
    ErrorPolicy,
    LifecycleKind,
    LoadAbortedError,
    LoaderSettings,
    ResourceSettings,
    SchedulerHandle,
    SchedulerPhase,
)


@pytest.mark.asyncio
async def test_end_to_end_two_tiers(config, recorder):
    calls = []

    async def fetch(resource_id, settings):
        calls.append(resource_id)

    finished = []
    handle = SchedulerHandle({"a": 1, "b": 1, "c": 2}, loader=fetch, config=config)
    handle.lifecycle(recorder)
    handle.start(lambda: finished.append(len(recorder.events)))
    await handle.wait()

    terminal = recorder.terminal()
    assert [e.kind for e in terminal] == [LifecycleKind.SUCCESS] * 3
    assert {e.id for e in terminal[:2]} == {"a", "b"}
    assert terminal[2].id == "c"
    assert set(calls[:2]) == {"a", "b"} and calls[2] == "c"
    # finish fires once, after the last event
    assert finished == [len(recorder.events)]
    assert handle.phase is SchedulerPhase.Finished


@pytest.mark.asyncio
async def test_next_tier_waits_for_every_resource(config, loader):
    handle = SchedulerHandle({"a": 1, "b": 1, "c": 2, "d": 2}, loader=loader, config=config)
    finished = []
    handle.start(lambda: finished.append(True))
    await settle()

    assert loader.calls == ["a", "b"]

    loader.succeed("a")
    await settle()
    assert loader.calls == ["a", "b"]

    loader.fail("b")
    await settle()
    assert loader.calls == ["a", "b", "c", "d"]
    assert finished == []

    loader.succeed("d")
    loader.succeed("c")
    await handle.wait()
    assert finished == [True]


@pytest.mark.asyncio
async def test_start_twice_loads_once(config, loader):
    handle = SchedulerHandle({"a": 1}, loader=loader, config=config)
    finished = []

    first = handle.start(lambda: finished.append(1))
    second = handle.start(lambda: finished.append(2))
    await settle()
    loader.succeed("a")
    await handle.wait()

    assert first is not None
    assert second is None
    assert loader.calls == ["a"]
    assert finished == [1]
    assert handle.started is True


def test_start_requires_running_loop(config, loader):
    handle = SchedulerHandle({"a": 1}, loader=loader, config=config)

    with pytest.raises(RuntimeError):
        handle.start()
    assert handle.started is False


@pytest.mark.asyncio
async def test_timeout_does_not_block_next_tier(config, loader, recorder):
    handle = SchedulerHandle(
        {"slow": 1, "next": 2},
        loader=loader,
        config=config,
        overrides={"slow": {"timeout": 50}},
    ).lifecycle(recorder)
    handle.start()
    await asyncio.sleep(0.1)

    assert loader.calls == ["slow", "next"]
    slow_events = recorder.for_id("slow")
    assert [e.kind for e in slow_events] == [LifecycleKind.LOADING, LifecycleKind.TIMEOUT]

    loader.succeed("next")
    await handle.wait()


@pytest.mark.asyncio
async def test_duplicate_success_observed_once(config, recorder):
    class Chatty(ControlledLoader):
        def load(self, resource_id, settings, signals):
            super().load(resource_id, settings, signals)
            signals.succeeded()
            signals.succeeded()

    handle = SchedulerHandle({"a": 1}, loader=Chatty(), config=config).lifecycle(recorder)
    await handle.run()

    assert [e.kind for e in recorder.terminal()] == [LifecycleKind.SUCCESS]


@pytest.mark.asyncio
async def test_bad_priority_fails_construction(config, loader, recorder):
    with pytest.raises(ConfigurationError):
        SchedulerHandle({"x": "bad"}, loader=loader, config=config)

    assert loader.calls == []
    assert recorder.events == []


@pytest.mark.asyncio
async def test_settings_error_does_not_stop_sequence(config, loader, recorder):
    handle = SchedulerHandle(
        {"a": 1, "b": 2},
        loader=loader,
        config=config,
        overrides={"a": {"timeout": "soon"}},
    ).lifecycle(recorder)
    handle.start()
    await settle()
    loader.succeed("b")
    await handle.wait()

    assert loader.calls == ["b"]
    assert recorder.for_id("a")[0].kind is LifecycleKind.SETTINGS_ERROR


@pytest.mark.asyncio
async def test_continue_policy_runs_every_tier(loader, recorder):
    config = LoaderSettings(error_policy=ErrorPolicy.Continue)
    handle = SchedulerHandle({"a": 1, "b": 1, "c": 2}, loader=loader, config=config)
    handle.lifecycle(recorder)
    finished = []
    handle.start(lambda: finished.append(True))
    await settle()
    loader.fail("a")
    loader.succeed("b")
    await settle()
    loader.succeed("c")
    await handle.wait()

    assert loader.calls == ["a", "b", "c"]
    assert finished == [True]


@pytest.mark.asyncio
async def test_abort_policy_skips_remaining_tiers(loader, recorder):
    config = LoaderSettings(error_policy=ErrorPolicy.Abort)
    handle = SchedulerHandle({"a": 1, "b": 1, "c": 2}, loader=loader, config=config)
    handle.lifecycle(recorder)
    finished = []
    handle.start(lambda: finished.append(True))
    await settle()
    loader.fail("a", "refused")
    await settle()
    # siblings still complete before the abort takes effect
    assert handle.phase is SchedulerPhase.Running
    loader.succeed("b")

    with pytest.raises(LoadAbortedError) as excinfo:
        await handle.wait()

    assert excinfo.value.event.id == "a"
    assert excinfo.value.skipped_tiers == 1
    assert loader.calls == ["a", "b"]
    assert finished == []
    assert handle.phase is SchedulerPhase.Aborted
    assert {e.id for e in recorder.terminal()} == {"a", "b"}


@pytest.mark.asyncio
async def test_failing_observer_does_not_stop_loading(config):
    loop = asyncio.get_running_loop()
    contexts = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: contexts.append(context))

    async def fetch(resource_id, settings):
        return None

    def observer(event):
        raise ValueError("observer bug")

    try:
        handle = SchedulerHandle({"a": 1, "b": 2}, loader=fetch, config=config)
        handle.lifecycle(observer)
        finished = []
        await handle.run(lambda: finished.append(True))
        await settle()
    finally:
        loop.set_exception_handler(previous)

    assert finished == [True]
    assert handle.bus.observer_failures == 4
    assert len(contexts) == 4
    assert handle.report()["counts"] == {"success": 2}


@pytest.mark.asyncio
async def test_shared_settings_and_overrides_are_merged(config, loader):
    handle = SchedulerHandle(
        {"a": 1, "b": 1},
        {"timeout": 1000, "attrs": {"charset": "utf-8"}},
        loader=loader,
        config=config,
        overrides={"b": {"attrs": {"charset": "latin-1"}}},
    )
    handle.start()
    await settle()
    loader.succeed("a")
    loader.succeed("b")
    await handle.wait()

    assert loader.settings["a"].attrs == {"charset": "utf-8"}
    assert loader.settings["b"].attrs == {"charset": "latin-1"}
    assert loader.settings["b"].timeout == 1000


@pytest.mark.asyncio
async def test_empty_map_finishes_immediately(config, loader):
    finished = []
    handle = SchedulerHandle.load({}, loader=loader, config=config)

    await handle.run(lambda: finished.append(True))

    assert finished == [True]
    assert handle.tiers == ()


@pytest.mark.asyncio
async def test_report_describes_outcomes(config, loader):
    handle = SchedulerHandle({"a": 1, "b": 2}, loader=loader, config=config)
    handle.start()
    await settle()

    report = handle.report()
    assert report["phase"] == "running"
    assert report["resources"]["b"]["kind"] is None

    loader.fail("a", "nope")
    await settle()
    loader.succeed("b")
    await handle.wait()

    report = handle.report()
    assert report["phase"] == "finished"
    assert report["completed_tiers"] == 2
    assert report["counts"] == {"network_error": 1, "success": 1}
    assert report["resources"]["a"]["message"] == "nope"
    assert report["resources"]["b"]["tier"] == 1
    assert report["resources"]["b"]["duration_ms"] >= 0


@pytest.mark.asyncio
async def test_wait_before_start_raises(config, loader):
    handle = SchedulerHandle({"a": 1}, loader=loader, config=config)

    with pytest.raises(RuntimeError):
        await handle.wait()


def test_rejects_non_callable_loader(config):
    with pytest.raises(TypeError):
        SchedulerHandle({"a": 1}, loader=42, config=config)


def test_uses_global_settings_by_default(monkeypatch, loader):
    monkeypatch.setenv("TIERLOADER_ERROR_POLICY", "abort")

    handle = SchedulerHandle({"a": 1}, loader=loader)

    assert handle.config.error_policy is ErrorPolicy.Abort
    assert handle.bus.policy is ErrorPolicy.Abort


@pytest.mark.asyncio
async def test_observer_can_be_replaced_before_start(config):
    async def fetch(resource_id, settings):
        return None

    first, second = EventRecorder(), EventRecorder()
    handle = SchedulerHandle({"a": 1}, loader=fetch, config=config)
    await handle.lifecycle(first).lifecycle(second).run()

    assert first.events == []
    assert [e.kind for e in second.events] == [LifecycleKind.LOADING, LifecycleKind.SUCCESS]


@pytest.mark.asyncio
async def test_model_override_is_merged_with_shared_settings(config, loader):
    handle = SchedulerHandle(
        {"a": 1},
        ResourceSettings(timeout=1000, attrs={"charset": "utf-8"}),
        loader=loader,
        config=config,
        overrides={"a": ResourceSettings(attrs={"charset": "latin-1"})},
    )
    handle.start()
    await settle()
    loader.succeed("a")
    await handle.wait()

    assert loader.settings["a"].attrs == {"charset": "latin-1"}
    assert loader.settings["a"].timeout == 1000


@pytest.mark.asyncio
async def test_invalid_shared_settings_are_not_hidden_by_override(config, loader, recorder):
    handle = SchedulerHandle(
        {"a": 1},
        "fast",
        loader=loader,
        config=config,
        overrides={"a": {"timeout": 10}},
    ).lifecycle(recorder)

    await handle.run()

    assert loader.calls == []
    assert recorder.terminal()[0].kind is LifecycleKind.SETTINGS_ERROR
