"""The transition engine.

:func:`transition_state` computes the next state for an action without
touching any machine: it validates, runs the reducer, checks the destination,
and returns a :class:`TransitionRecord` (or ``None`` when nothing handles the
action). Committing the record, notifying subscribers, and running effects is
the machine's job.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from .errors import (
    ErrorContext,
    FinityError,
    HandlerError,
    illegal_destination,
    invalid_payload,
    transition_not_found,
)
from .schema import Issue, SchemaError
from .spec import CREATE, DESTROY, Action, Spec, StateValue


@dataclass(frozen=True)
class TransitionRecord:
    prev: StateValue
    next: StateValue
    action: Action
    at: int  # epoch milliseconds


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_action(action: Any) -> Action:
    """Turn a bare action id into ``{"type": id}``; copy mappings."""
    if isinstance(action, str):
        return {"type": action}
    if isinstance(action, Mapping):
        return dict(action)
    raise invalid_payload(
        "action",
        action,
        SchemaError([Issue((), f"expected action id or mapping, got {type(action).__name__}")]),
    )


def create_transition(prev: StateValue, next: StateValue, action: Action, at: Optional[int] = None) -> TransitionRecord:
    return TransitionRecord(prev=prev, next=next, action=action, at=now_ms() if at is None else at)


def transition_state(
    spec: Spec,
    prev: StateValue,
    action: Any,
    *,
    logger: Any = None,
    clock: Callable[[], int] = now_ms,
) -> Optional[TransitionRecord]:
    """Perform the transition ``spec`` defines for ``prev.state`` and ``action``.

    Args:
        spec: The machine spec.
        prev: Current state value.
        action: Action mapping with a ``type``, or a bare action id.
        logger: Optional logger for ignored actions (see ``SpecOptions.log_dispatch``).
        clock: Returns the current time in epoch milliseconds.

    Returns:
        The TransitionRecord, or None when no transition matches (no-op).

    Raises:
        TransitionNotFoundError: No transition matches and the spec is exhaustive.
        ValidationError: The action or the resulting state fails its schema.
        HandlerError: The reducer raised.
        IllegalDestinationError: The reducer returned an undeclared destination.
    """
    action = normalize_action(action)
    action_type = action.get("type")

    entry = spec.get_transition(prev.state, action_type)
    if entry is None:
        # Lifecycle actions are optional hooks, even in exhaustive specs.
        if action_type in (CREATE, DESTROY):
            return None
        if spec.options.exhaustive:
            raise transition_not_found(prev.state, action_type, spec.id)
        if spec.options.log_dispatch and logger is not None:
            logger.warning(
                "Transition not defined from state %r on action %r", prev.state, action_type
            )
        return None

    action = dict(spec.parse_action(action))
    meta = dict(action.get("meta") or {})
    meta["created_at"] = clock()
    action["meta"] = meta

    try:
        result = entry.reducer(prev, action)
    except FinityError:
        raise
    except Exception as e:
        ctx = ErrorContext().add("spec", spec.id).add("state", prev.state).add("action", action_type)
        raise HandlerError(
            f"Reducer failed for state {prev.state!r} on action {action_type!r}: {e}",
            phase="reducer",
            why=f"{type(e).__name__} raised inside the reducer.",
            fix="Fix the reducer; see the chained exception for the traceback.",
            context=ctx,
        ) from e

    try:
        candidate = StateValue.coerce(result)
    except SchemaError as e:
        raise invalid_payload("state", result, e, spec.id) from None

    if candidate.state not in entry.allowed_states:
        raise illegal_destination(prev.state, action_type, candidate.state, entry.allowed_states)

    next_value = spec.init_state(candidate)
    return create_transition(prev, next_value, action, clock())
