"""Tests for the spec builder and bulk define()."""

from __future__ import annotations

import pytest

from finity import (
    CREATE,
    DESTROY,
    DESTROYED,
    DefinitionError,
    Spec,
    StateValue,
    ValidationError,
    create_machine,
    define,
)
from finity.schema import Is
from finity.spec import Goto


# --- duplicate registration ---


def test_duplicate_state_raises():
    spec = Spec("s").state("a")
    with pytest.raises(DefinitionError, match="State already defined"):
        spec.state("a")


def test_duplicate_action_raises():
    spec = Spec("s").action("go")
    with pytest.raises(DefinitionError, match="Action already defined"):
        spec.action("go")


def test_duplicate_effect_raises():
    spec = Spec("s").effect("tick", lambda ctx, args: None)
    with pytest.raises(DefinitionError, match="Effect already defined"):
        spec.effect("tick", lambda ctx, args: None)


def test_builtin_actions_are_registered():
    spec = Spec("s")
    assert CREATE in spec.actions
    assert DESTROY in spec.actions
    with pytest.raises(DefinitionError):
        spec.action(CREATE)


def test_destroyed_state_is_reserved():
    with pytest.raises(DefinitionError, match="reserved"):
        Spec("s").state(DESTROYED)


def test_effect_requires_callable_handler():
    with pytest.raises(DefinitionError, match="must be callable"):
        Spec("s").effect("tick", {"ms": Is(int)}, "not a function")


# --- transitions ---


def test_transition_expands_cartesian_product():
    spec = Spec("s").state("a").state("b").state("c").action("x").action("y")
    spec.transition(from_=["a", "b"], actions=["x", "y"], to="c")

    assert set(spec.transitions) == {("a", "x"), ("a", "y"), ("b", "x"), ("b", "y")}
    assert spec.get_transition("a", "x").allowed_states == frozenset({"c"})


def test_transition_shorthand_installs_goto_reducer():
    spec = Spec("s").state("a").state("b").action("go")
    spec.transition(from_="a", actions="go", to="b")

    entry = spec.get_transition("a", "go")
    assert isinstance(entry.reducer, Goto)
    assert entry.reducer(StateValue("a"), {"type": "go"}) == StateValue("b")


def test_transition_reducer_as_state_id():
    spec = Spec("s").state("a").state("b").action("go")
    spec.transition(from_=["a"], actions=["go"], reducer="b")
    assert spec.get_transition("a", "go").allowed_states == frozenset({"b"})


def test_transition_unregistered_action_raises_before_mutation():
    spec = Spec("s").state("a").state("b")
    with pytest.raises(DefinitionError, match="Unknown action"):
        spec.transition(from_=["a"], actions=["missingAction"], to="b")
    assert spec.transitions == {}


def test_transition_unregistered_state_raises():
    spec = Spec("s").state("a").action("go")
    with pytest.raises(DefinitionError, match="Unknown state"):
        spec.transition(from_=["a", "ghost"], actions=["go"], to="a")
    with pytest.raises(DefinitionError, match="Unknown state"):
        spec.transition(from_=["a"], actions=["go"], to="ghost")
    assert spec.transitions == {}


def test_transition_duplicate_pair_raises_without_partial_writes():
    spec = Spec("s").state("a").state("b").action("go").action("stop")
    spec.transition(from_=["a"], actions=["stop"], to="b")

    with pytest.raises(DefinitionError, match="Transition already defined"):
        spec.transition(from_=["a"], actions=["go", "stop"], to="b")

    # ("a", "go") must not have been written
    assert spec.get_transition("a", "go") is None


def test_transition_reducer_needs_to_states():
    spec = Spec("s").state("a").action("go")
    with pytest.raises(DefinitionError, match="allowed 'to' states"):
        spec.transition(from_=["a"], actions=["go"], reducer=lambda prev, action: "a")


def test_transition_without_reducer_needs_single_destination():
    spec = Spec("s").state("a").state("b").action("go")
    with pytest.raises(DefinitionError, match="single 'to' state"):
        spec.transition(from_=["a"], actions=["go"], to=["a", "b"])


def test_transition_on_builtin_create_action():
    spec = Spec("s").state("a").state("b")
    spec.transition(from_=["a"], actions=[CREATE], to="b")
    assert spec.get_transition("a", CREATE) is not None


# --- initial ---


def test_set_initial_requires_registered_state():
    with pytest.raises(DefinitionError, match="Unknown state"):
        Spec("s").set_initial("nowhere")


def test_set_initial_validates_context():
    spec = Spec("s").state("a", {"count": Is(int)})
    with pytest.raises(ValidationError) as exc_info:
        spec.set_initial({"state": "a", "context": {"count": "zero"}})

    err = exc_info.value
    assert err.kind == "state"
    assert err.id == "a"
    assert [str(i) for i in err.issues] == ["context.count: expected int, got str"]


def test_set_initial_normalizes():
    spec = Spec("s").state("a").set_initial("a")
    assert spec.initial == StateValue(state="a", context={}, effects={})


def test_state_without_schema_requires_empty_context():
    spec = Spec("s").state("a")
    with pytest.raises(ValidationError):
        spec.set_initial({"state": "a", "context": {"x": 1}})


def test_initial_effects_are_validated():
    spec = Spec("s").state("a").effect("tick", {"ms": Is(int)}, lambda ctx, args: None)
    with pytest.raises(ValidationError, match="Invalid effect"):
        spec.set_initial({"state": "a", "effects": {"tick": {"ms": "soon"}}})
    with pytest.raises(ValidationError, match="No effect registered"):
        spec.set_initial({"state": "a", "effects": {"tock": {}}})


# --- freezing ---


def test_spec_frozen_after_create_machine(traffic_spec):
    create_machine(traffic_spec)
    assert traffic_spec.frozen

    with pytest.raises(DefinitionError, match="frozen"):
        traffic_spec.state("blue")
    with pytest.raises(DefinitionError, match="frozen"):
        traffic_spec.action("stop")


# --- define ---


def test_define_traffic_light():
    spec = define(
        {
            "id": "traffic",
            "initial": "red",
            "states": {"red": {}, "yellow": {}, "green": {}},
            "actions": {"next": {}},
            "transitions": [
                {"from": ["red"], "actions": ["next"], "to": "green"},
                {"from": ["green"], "actions": ["next"], "to": "yellow"},
                {"from": ["yellow"], "actions": ["next"], "to": "red"},
            ],
        }
    )
    assert spec.id == "traffic"
    assert spec.initial.state == "red"
    assert len(spec.transitions) == 3


def test_define_with_effects_and_reducers():
    started = []

    spec = define(
        {
            "id": "timer",
            "initial": {"state": "idle", "context": {}},
            "states": {"idle": None, "running": {"ms": Is(int)}},
            "actions": {"start": {"ms": Is(int)}, "stop": {}},
            "effects": {
                "wait": {"args": {"ms": Is(int)}, "do": lambda ctx, args: started.append(args)},
                "beep": lambda ctx, args: None,
            },
            "transitions": [
                {
                    "from": ["idle"],
                    "actions": ["start"],
                    "to": ["running"],
                    "do": lambda prev, action: {
                        "state": "running",
                        "context": {"ms": action["ms"]},
                        "effects": {"wait": {"ms": action["ms"]}},
                    },
                },
                {"from": ["running"], "actions": ["stop"], "to": "idle"},
            ],
            "options": {"exhaustive": True},
        }
    )

    assert spec.options.exhaustive is True
    assert set(spec.effects) == {"wait", "beep"}

    fsm = create_machine(spec)
    fsm.dispatch({"type": "start", "ms": 10})
    assert started == [{"ms": 10}]


def test_define_collects_all_shape_issues():
    with pytest.raises(DefinitionError) as exc_info:
        define({"id": 5, "states": "nope", "transitions": [{"from": ["a"]}]})

    err = exc_info.value
    assert err.what == "Invalid machine document"
    issues = err.context.items["issues"]
    assert any(i.startswith("id:") for i in issues)
    assert any(i.startswith("states:") for i in issues)
    assert any(i.startswith("initial:") for i in issues)


def test_define_transition_with_list_to_requires_do():
    with pytest.raises(DefinitionError, match="Invalid machine document"):
        define(
            {
                "id": "s",
                "initial": "a",
                "states": {"a": {}, "b": {}},
                "actions": {"go": {}},
                "transitions": [{"from": ["a"], "actions": ["go"], "to": ["a", "b"]}],
            }
        )


def test_define_replays_granular_errors():
    with pytest.raises(DefinitionError, match="Unknown action"):
        define(
            {
                "id": "s",
                "initial": "a",
                "states": {"a": {}},
                "transitions": [{"from": ["a"], "actions": ["missing"], "to": "a"}],
            }
        )
