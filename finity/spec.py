"""Machine specs: the registry of states, actions, effects, and transitions.

A :class:`Spec` is assembled either incrementally::

    spec = Spec("traffic")
    spec.state("red").state("yellow").state("green")
    spec.action("next")
    spec.transition(from_=["red"], actions=["next"], to="green")
    spec.set_initial("red")

or in one call with :func:`define`. Once a machine is created from a spec the
spec is frozen and every register call raises :class:`DefinitionError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from .errors import (
    DefinitionError,
    ErrorContext,
    already_defined,
    invalid_payload,
    not_registered,
    spec_frozen,
    transition_already_defined,
    unknown_payload,
)
from .schema import (
    Assert,
    Is,
    Issue,
    ListOf,
    Literal,
    MapOf,
    Nilable,
    Record,
    SchemaError,
    as_schema,
    is_mapping,
    is_schema,
)
from .schema import Union as UnionOf

CREATE = "fsm/create"
DESTROY = "fsm/destroy"
DESTROYED = "fsm/destroyed"

Action = Dict[str, Any]
Reducer = Callable[["StateValue", Action], Any]
EffectHandler = Callable[[Any, Any], Optional[Callable[[], Any]]]


@dataclass(frozen=True)
class StateValue:
    """A machine snapshot: current state id, its context, and requested effects."""

    state: str
    context: Dict[str, Any] = field(default_factory=dict)
    effects: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.context.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state, "context": dict(self.context), "effects": dict(self.effects)}

    @classmethod
    def coerce(cls, value: Union[str, Mapping[str, Any], "StateValue"]) -> "StateValue":
        """Build a StateValue from an id, a mapping, or another StateValue.

        Missing context/effects become empty; a bare id as ``effects`` means
        ``{id: {}}``. Raises SchemaError when no state id can be found.
        """
        if isinstance(value, StateValue):
            return value
        if isinstance(value, str):
            return cls(state=value)
        if not isinstance(value, Mapping):
            raise SchemaError([Issue((), f"expected state id or mapping, got {type(value).__name__}")])
        if not isinstance(value.get("state"), str):
            raise SchemaError([Issue(("state",), f"expected state id, got {value.get('state')!r}")])

        context = value.get("context")
        effects = value.get("effects")
        if isinstance(effects, str):
            effects = {effects: {}}
        return cls(
            state=value["state"],
            context=dict(context) if isinstance(context, Mapping) else ({} if context is None else context),
            effects=dict(effects) if isinstance(effects, Mapping) else ({} if effects is None else effects),
        )


@dataclass(frozen=True)
class EffectDef:
    schema: Any
    handler: EffectHandler


@dataclass(frozen=True)
class TransitionDef:
    reducer: Reducer
    allowed_states: FrozenSet[str]


@dataclass(frozen=True)
class SpecOptions:
    """
    Attributes:
        exhaustive: Dispatching an action with no transition is an error
                    instead of a no-op.
        log_dispatch: Log ignored actions at WARNING level.
    """

    exhaustive: bool = False
    log_dispatch: bool = False


class Goto:
    """Reducer installed for ``to="state"`` shorthand transitions."""

    def __init__(self, state: str) -> None:
        self.state = state

    def __call__(self, prev: StateValue, action: Action) -> StateValue:
        return StateValue(state=self.state)

    def __repr__(self) -> str:
        return f"Goto({self.state!r})"


def _action_schema(id: str, fields: Optional[Mapping[str, Any]] = None) -> Record:
    merged: Dict[str, Any] = {}
    if fields:
        merged.update(as_schema(fields).fields)
    merged["type"] = Literal(id)
    return Record(merged)


def _is_empty_mapping(obj: Any) -> bool:
    return isinstance(obj, Mapping) and not obj


def _as_list(ids: Any) -> List[Any]:
    if ids is None:
        return []
    if isinstance(ids, (str, bytes)):
        return [ids]
    return list(dict.fromkeys(ids))


class Spec:
    def __init__(self, id: str, *, options: Optional[SpecOptions] = None) -> None:
        self.id = id
        self.options = options or SpecOptions()
        self.initial: Optional[StateValue] = None
        self.states: Dict[str, Any] = {}
        self.actions: Dict[str, Any] = {
            CREATE: _action_schema(CREATE),
            DESTROY: _action_schema(DESTROY),
        }
        self.effects: Dict[str, EffectDef] = {}
        self.transitions: Dict[Tuple[str, str], TransitionDef] = {}
        self._frozen = False

    def __repr__(self) -> str:
        return f"Spec({self.id!r}, states={sorted(self.states)!r})"

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "Spec":
        self._frozen = True
        return self

    def _assert_mutable(self) -> None:
        if self._frozen:
            raise spec_frozen(self.id)

    # --- registration ---

    def state(self, id: str, context_schema: Any = None) -> "Spec":
        """Register a state. Without a context schema the context must be ``{}``."""
        self._assert_mutable()
        if not isinstance(id, str) or not id:
            raise DefinitionError(
                f"Invalid state id: {id!r}",
                why="State ids must be non-empty strings.",
                context=ErrorContext().add("spec", self.id),
            )
        if id == DESTROYED:
            raise DefinitionError(
                f"State id {id!r} is reserved",
                why="The destroyed sentinel is assigned by destroy() and cannot be registered.",
                fix="Choose a different state id.",
                context=ErrorContext().add("spec", self.id),
            )
        if id in self.states:
            raise already_defined("state", id, self.id)

        if context_schema is None or _is_empty_mapping(context_schema):
            context = Literal({})
        else:
            context = as_schema(context_schema)

        self.states[id] = Record(
            {"state": Literal(id), "context": context, "effects": Nilable(is_mapping)}
        )
        return self

    def action(self, id: str, schema: Any = None) -> "Spec":
        """Register an action. ``schema`` maps extra action fields to schemas."""
        self._assert_mutable()
        if not isinstance(id, str) or not id:
            raise DefinitionError(
                f"Invalid action id: {id!r}",
                why="Action ids must be non-empty strings.",
                context=ErrorContext().add("spec", self.id),
            )
        if id in self.actions:
            raise already_defined("action", id, self.id)

        if schema is None or _is_empty_mapping(schema):
            self.actions[id] = _action_schema(id)
        elif isinstance(schema, Mapping):
            self.actions[id] = _action_schema(id, schema)
        else:
            # A full schema object validates the whole action, including 'type'.
            self.actions[id] = as_schema(schema)
        return self

    def effect(self, id: str, args_schema: Any = None, handler: Optional[EffectHandler] = None) -> "Spec":
        """Register an effect handler.

        Can be called as ``effect(id, handler)`` or ``effect(id, args_schema, handler)``.
        Without an args schema the args must be ``{}`` or ``None``.
        """
        self._assert_mutable()
        if handler is None and callable(args_schema) and not is_schema(args_schema):
            args_schema, handler = None, args_schema
        if not callable(handler):
            raise DefinitionError(
                f"Effect handler for {id!r} must be callable",
                why=f"Got {type(handler).__name__}.",
                fix="Pass a function receiving (effect_context, args).",
                context=ErrorContext().add("spec", self.id).add("effect", id),
            )
        if id in self.effects:
            raise already_defined("effect", id, self.id)

        if args_schema is None or _is_empty_mapping(args_schema):
            schema = Nilable(Literal({}))
        else:
            schema = as_schema(args_schema)

        self.effects[id] = EffectDef(schema=schema, handler=handler)
        return self

    def transition(
        self,
        from_: Any,
        actions: Any,
        to: Any = None,
        reducer: Union[Reducer, str, None] = None,
    ) -> "Spec":
        """Register a reducer for every (state, action) pair of ``from_`` x ``actions``.

        Args:
            from_: State id or list of state ids to transition from.
            actions: Action id or list of action ids that trigger the transition.
            to: Destination state id, or list of ids the reducer may return.
            reducer: ``(prev, action) -> next`` function, or a destination id.

        A bare destination (``to="green"`` with no reducer, or ``reducer="green"``)
        installs a reducer that always returns that state with empty context
        and effects; no other destination is reachable through it.

        Nothing is registered unless every pair is valid.
        """
        self._assert_mutable()
        from_states = _as_list(from_)
        action_ids = _as_list(actions)

        if isinstance(reducer, str):
            fn: Reducer = Goto(reducer)
            allowed = [reducer]
        elif reducer is None:
            if not isinstance(to, str):
                raise DefinitionError(
                    "Transition without a reducer needs a single 'to' state",
                    why=f"Got to={to!r}.",
                    fix="Pass to='state_id', or pass a reducer together with a list of 'to' states.",
                    context=ErrorContext().add("spec", self.id).add("from", from_states).add("actions", action_ids),
                )
            fn = Goto(to)
            allowed = [to]
        elif callable(reducer):
            allowed = _as_list(to)
            if not allowed:
                raise DefinitionError(
                    "Transition reducer needs its allowed 'to' states",
                    why="A reducer may only return states declared in 'to'.",
                    fix="Pass to=['state_a', 'state_b'] alongside the reducer.",
                    context=ErrorContext().add("spec", self.id).add("from", from_states).add("actions", action_ids),
                )
            fn = reducer
        else:
            raise DefinitionError(
                f"Invalid transition reducer: {reducer!r}",
                why="A reducer must be a function or a destination state id.",
                context=ErrorContext().add("spec", self.id),
            )

        if not from_states or not action_ids:
            raise DefinitionError(
                "Transition needs at least one 'from' state and one action",
                context=ErrorContext().add("spec", self.id).add("from", from_states).add("actions", action_ids),
            )

        for action in action_ids:
            if action not in self.actions:
                raise not_registered("action", action, self.actions, self.id)
        for state in from_states:
            if state not in self.states:
                raise not_registered("state", state, self.states, self.id)
        for state in allowed:
            if state not in self.states:
                raise not_registered("state", state, self.states, self.id)

        pairs = [(state, action) for state in from_states for action in action_ids]
        for state, action in pairs:
            if (state, action) in self.transitions:
                raise transition_already_defined(state, action, self.id)

        entry = TransitionDef(reducer=fn, allowed_states=frozenset(allowed))
        for pair in pairs:
            self.transitions[pair] = entry
        return self

    def set_initial(self, value: Union[str, Mapping[str, Any], StateValue]) -> "Spec":
        """Validate and store the default initial state."""
        self._assert_mutable()
        try:
            state_value = StateValue.coerce(value)
        except SchemaError as e:
            raise invalid_payload("state", value, e, self.id) from None
        if state_value.state not in self.states:
            raise not_registered("state", state_value.state, self.states, self.id)
        self.initial = self.init_state(state_value)
        return self

    # --- lookups and validation ---

    def get_transition(self, state: str, action_type: str) -> Optional[TransitionDef]:
        return self.transitions.get((state, action_type))

    def parse_state(self, value: StateValue) -> StateValue:
        """Validate the state id and context of ``value``."""
        schema = self.states.get(value.state)
        if schema is None:
            raise unknown_payload("state", value.state, self.states, self.id)
        try:
            parsed = schema.parse(
                {"state": value.state, "context": value.context, "effects": value.effects}
            )
        except SchemaError as e:
            raise invalid_payload("state", value.state, e, self.id) from None
        return StateValue(state=value.state, context=parsed["context"], effects=value.effects)

    def parse_effect(self, effect_id: str, args: Any) -> Any:
        effect = self.effects.get(effect_id)
        if effect is None:
            raise unknown_payload("effect", effect_id, self.effects, self.id)
        try:
            return effect.schema.parse(args)
        except SchemaError as e:
            raise invalid_payload("effect", effect_id, e, self.id) from None

    def parse_action(self, action: Action) -> Action:
        action_type = action.get("type")
        schema = self.actions.get(action_type)
        if schema is None:
            raise unknown_payload("action", action_type, self.actions, self.id)
        try:
            return schema.parse(action)
        except SchemaError as e:
            raise invalid_payload("action", action_type, e, self.id) from None

    def init_state(self, value: Union[str, Mapping[str, Any], StateValue]) -> StateValue:
        """Normalize ``value`` and validate it along with every effect's args."""
        try:
            state_value = StateValue.coerce(value)
        except SchemaError as e:
            raise invalid_payload("state", value, e, self.id) from None
        if not isinstance(state_value.effects, Mapping):
            raise invalid_payload(
                "state",
                state_value.state,
                SchemaError([Issue(("effects",), f"expected mapping, got {state_value.effects!r}")]),
                self.id,
            )
        effects = {
            effect_id: self.parse_effect(effect_id, args)
            for effect_id, args in state_value.effects.items()
        }
        parsed = self.parse_state(StateValue(state_value.state, state_value.context, effects))
        return parsed


# --- bulk definition ---

_callable = Assert(callable, "expected function")
_schema_value = Assert(is_schema, "expected schema")
_schema_map = UnionOf(_schema_value, MapOf(Is(str), _schema_value))
_ids = UnionOf(Is(str), ListOf(Is(str)))

DOCUMENT_SCHEMA = Record(
    {
        "id": Is(str),
        "initial": UnionOf(
            Is(str),
            Record(
                {
                    "state": Is(str),
                    "context": Nilable(is_mapping),
                    "effects": Nilable(is_mapping),
                }
            ),
        ),
        "states": MapOf(Is(str), Nilable(_schema_map)),
        "actions": Nilable(MapOf(Is(str), Nilable(_schema_map))),
        "effects": Nilable(
            MapOf(
                Is(str),
                UnionOf(_callable, Record({"args": Nilable(_schema_map), "do": _callable})),
            )
        ),
        "transitions": Nilable(
            ListOf(
                UnionOf(
                    Record({"from": _ids, "actions": _ids, "to": _ids, "do": _callable}),
                    Record({"from": _ids, "actions": _ids, "to": Is(str)}),
                )
            )
        ),
        "options": Nilable(
            Record({"exhaustive": Nilable(Is(bool)), "log_dispatch": Nilable(Is(bool))})
        ),
    }
)


def define(document: Mapping[str, Any]) -> Spec:
    """Define a whole spec in one call.

    The document is validated as a whole first, then replayed through the
    granular calls in order: states, actions, effects, transitions, initial.

    Example:
        spec = define({
            "id": "traffic",
            "initial": "red",
            "states": {"red": {}, "yellow": {}, "green": {}},
            "actions": {"next": {}},
            "transitions": [
                {"from": ["red"], "actions": ["next"], "to": "green"},
                {"from": ["green"], "actions": ["next"], "to": "yellow"},
                {"from": ["yellow"], "actions": ["next"], "to": "red"},
            ],
        })
    """
    try:
        doc = DOCUMENT_SCHEMA.parse(document)
    except SchemaError as e:
        ctx = ErrorContext()
        if isinstance(document, Mapping):
            ctx.add("spec", document.get("id"))
        ctx.add("issues", [str(issue) for issue in e.issues])
        raise DefinitionError(
            "Invalid machine document",
            why=e.format(),
            fix="Fix the listed fields; see finity.spec.define for the document layout.",
            context=ctx,
        ) from None

    options = {k: v for k, v in (doc.get("options") or {}).items() if v is not None}
    spec = Spec(doc["id"], options=SpecOptions(**options))

    for id, schema in doc["states"].items():
        spec.state(id, schema)

    for id, schema in (doc.get("actions") or {}).items():
        spec.action(id, schema)

    for id, effect in (doc.get("effects") or {}).items():
        if isinstance(effect, Mapping):
            spec.effect(id, effect.get("args"), effect["do"])
        else:
            spec.effect(id, None, effect)

    for trn in doc.get("transitions") or []:
        if "do" in trn:
            spec.transition(trn["from"], trn["actions"], to=trn["to"], reducer=trn["do"])
        else:
            spec.transition(trn["from"], trn["actions"], to=trn["to"])

    spec.set_initial(doc["initial"])
    return spec
