"""Tests for effect reconciliation."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from finity import HandlerError, Spec, StateValue, ValidationError
from finity.effects import EffectContext, reconcile, run_cleanups
from finity.schema import Is
from finity.transition import create_transition


class FakeMachine:
    def __init__(self) -> None:
        self.dispatched: List[Any] = []

    def dispatch(self, action):
        self.dispatched.append(action)


@pytest.fixture
def poll_spec(effect_log) -> Spec:
    spec = Spec("poller")
    spec.state("on", {"n": Is(int)}).state("off")
    spec.action("go")
    spec.effect("poll", {"ms": Is(int)}, effect_log.handler("poll"))
    spec.effect("beep", effect_log.handler("beep"))
    return spec


def record(prev_effects: Dict[str, Any], next_effects: Dict[str, Any]):
    return create_transition(
        StateValue("on", {"n": 1}, prev_effects),
        StateValue("on", {"n": 2}, next_effects),
        {"type": "go"},
        at=0,
    )


def test_new_effect_is_started(poll_spec, effect_log):
    active: Dict[str, Any] = {}
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": 10}}), active)

    assert effect_log.starts("poll") == [{"ms": 10}]
    assert callable(active["poll"])


def test_identical_args_leave_effect_alone(poll_spec, effect_log):
    active: Dict[str, Any] = {}
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": 10}}), active)
    first = active["poll"]

    reconcile(poll_spec, FakeMachine(), record({"poll": {"ms": 10}}, {"poll": {"ms": 10}}), active)

    assert effect_log.starts("poll") == [{"ms": 10}]
    assert effect_log.cleanups("poll") == []
    assert active["poll"] is first


def test_changed_args_clean_up_then_restart(poll_spec, effect_log):
    active: Dict[str, Any] = {}
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": 10}}), active)
    reconcile(poll_spec, FakeMachine(), record({"poll": {"ms": 10}}, {"poll": {"ms": 20}}), active)

    assert effect_log.events == [
        ("start", "poll", {"ms": 10}),
        ("cleanup", "poll", {"ms": 10}),
        ("start", "poll", {"ms": 20}),
    ]


def test_removed_effect_is_cleaned_up(poll_spec, effect_log):
    active: Dict[str, Any] = {}
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": 10}, "beep": {}}), active)
    reconcile(poll_spec, FakeMachine(), record({"poll": {"ms": 10}, "beep": {}}, {"beep": {}}), active)

    assert effect_log.cleanups("poll") == [{"ms": 10}]
    assert effect_log.cleanups("beep") == []
    assert set(active) == {"beep"}


def test_handler_without_cleanup_is_tracked_as_none(effect_log):
    spec = Spec("s").state("on", {"n": Is(int)}).effect("noop", lambda ctx, args: None)
    active: Dict[str, Any] = {}
    reconcile(spec, FakeMachine(), record({}, {"noop": {}}), active)
    assert active == {"noop": None}

    reconcile(spec, FakeMachine(), record({"noop": {}}, {}), active)
    assert active == {}


def test_handler_receives_effect_context():
    seen = []
    spec = Spec("s").state("on", {"n": Is(int)}).effect("peek", lambda ctx, args: seen.append(ctx))
    fsm = FakeMachine()
    reconcile(spec, fsm, record({}, {"peek": {}}), {})

    ctx = seen[0]
    assert isinstance(ctx, EffectContext)
    assert ctx.fsm is fsm
    assert ctx.state == "on"
    assert ctx.context == {"n": 2}
    assert ctx.action == {"type": "go"}

    ctx.dispatch("go")
    assert fsm.dispatched == ["go"]


def test_failing_handler_is_reported_and_others_still_run(effect_log):
    def boom(ctx, args):
        raise RuntimeError("nope")

    spec = Spec("s").state("on", {"n": Is(int)})
    spec.effect("boom", boom)
    spec.effect("beep", effect_log.handler("beep"))

    errors: List[BaseException] = []
    active: Dict[str, Any] = {}
    reconcile(spec, FakeMachine(), record({}, {"boom": {}, "beep": {}}), active, on_error=errors.append)

    assert len(errors) == 1
    assert isinstance(errors[0], HandlerError)
    assert errors[0].phase == "handler"
    assert isinstance(errors[0].__cause__, RuntimeError)
    assert "boom" not in active
    assert effect_log.starts("beep") == [{}]


def test_failing_handler_raises_without_on_error():
    def boom(ctx, args):
        raise RuntimeError("nope")

    spec = Spec("s").state("on", {"n": Is(int)}).effect("boom", boom)
    with pytest.raises(HandlerError):
        reconcile(spec, FakeMachine(), record({}, {"boom": {}}), {})


def test_invalid_args_are_reported(poll_spec):
    errors: List[BaseException] = []
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": "fast"}}), {}, on_error=errors.append)

    assert isinstance(errors[0], ValidationError)
    assert errors[0].kind == "effect"


def test_failing_cleanup_is_reported():
    def start(ctx, args):
        def cleanup():
            raise ValueError("stuck")

        return cleanup

    spec = Spec("s").state("on", {"n": Is(int)}).effect("sticky", start)
    errors: List[BaseException] = []
    active: Dict[str, Any] = {}
    reconcile(spec, FakeMachine(), record({}, {"sticky": {}}), active, on_error=errors.append)
    reconcile(spec, FakeMachine(), record({"sticky": {}}, {}), active, on_error=errors.append)

    assert [e.phase for e in errors] == ["cleanup"]
    assert active == {}


def test_effect_superseded_while_starting_is_cleaned_up(effect_log):
    spec = Spec("s").state("on", {"n": Is(int)})
    active: Dict[str, Any] = {}

    def start(ctx, args):
        # Simulate a dispatch from inside the handler that drops the effect.
        active.pop("slow", None)
        effect_log.events.append(("start", "slow", args))
        return lambda: effect_log.events.append(("cleanup", "slow", args))

    spec.effect("slow", start)
    reconcile(spec, FakeMachine(), record({}, {"slow": {}}), active)

    assert effect_log.events == [("start", "slow", {}), ("cleanup", "slow", {})]
    assert "slow" not in active


def test_run_cleanups_empties_active(poll_spec, effect_log):
    active: Dict[str, Any] = {}
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": 1}, "beep": {}}), active)

    run_cleanups(poll_spec, active)

    assert active == {}
    assert effect_log.cleanups("poll") == [{"ms": 1}]
    assert effect_log.cleanups("beep") == [{}]


def test_running_map_tracks_started_args(poll_spec, effect_log):
    active: Dict[str, Any] = {}
    running: Dict[str, Any] = {}
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": 5}}), active, running=running)
    assert running == {"poll": {"ms": 5}}

    # The record's prev is ignored in favour of what actually runs.
    reconcile(poll_spec, FakeMachine(), record({}, {"poll": {"ms": 5}}), active, running=running)
    assert effect_log.starts("poll") == [{"ms": 5}]

    reconcile(poll_spec, FakeMachine(), record({"poll": {"ms": 5}}, {}), active, running=running)
    assert running == {}
    assert active == {}


def test_reconcile_stops_when_no_longer_current(poll_spec, effect_log):
    active: Dict[str, Any] = {}
    reconcile(
        poll_spec,
        FakeMachine(),
        record({}, {"poll": {"ms": 1}, "beep": {}}),
        active,
        current=lambda: not effect_log.events,
    )

    assert effect_log.starts("poll") == [{"ms": 1}]
    assert effect_log.starts("beep") == []
