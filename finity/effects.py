"""Effect reconciliation.

A state value requests effects as a mapping of effect id to args. After each
transition the machine diffs the previous and next mappings:

- an id whose args changed (or that just appeared) has its running cleanup
  invoked and its handler started again with the new args;
- an id that disappeared has its cleanup invoked;
- an id with identical args is left alone.

At most one run per effect id is active at any time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from .errors import ErrorContext, FinityError, HandlerError
from .spec import Action, Spec

if TYPE_CHECKING:
    from .transition import TransitionRecord

Cleanup = Optional[Callable[[], Any]]
OnError = Callable[[BaseException], None]


@dataclass(frozen=True)
class EffectContext:
    """First argument passed to every effect handler."""

    fsm: Any
    dispatch: Callable[[Any], Any]
    state: str
    context: Dict[str, Any]
    action: Action


def _raise(error: BaseException) -> None:
    raise error


def _handler_error(phase: str, spec: Spec, effect_id: str, error: Exception) -> HandlerError:
    ctx = ErrorContext().add("spec", spec.id).add("effect", effect_id)
    wrapped = HandlerError(
        f"Effect {phase} failed for {effect_id!r}: {error}",
        phase=phase,
        why=f"{type(error).__name__} raised inside the effect {phase}.",
        fix=f"Fix the effect {phase}; see the chained exception for the traceback.",
        context=ctx,
    )
    wrapped.__cause__ = error
    return wrapped


def _call_cleanup(spec: Spec, effect_id: str, cleanup: Cleanup, on_error: OnError) -> None:
    if not callable(cleanup):
        return
    try:
        cleanup()
    except Exception as e:
        on_error(_handler_error("cleanup", spec, effect_id, e))


def run_effect(spec: Spec, fsm: Any, record: "TransitionRecord", effect_id: str, args: Any) -> Cleanup:
    """Validate ``args`` and start one effect. Returns its cleanup, if any."""
    effect_args = spec.parse_effect(effect_id, args)
    handler = spec.effects[effect_id].handler
    ctx = EffectContext(
        fsm=fsm,
        dispatch=fsm.dispatch,
        state=record.next.state,
        context=record.next.context,
        action=record.action,
    )
    result = handler(ctx, effect_args)
    return result if callable(result) else None


def reconcile(
    spec: Spec,
    fsm: Any,
    record: "TransitionRecord",
    active: Dict[str, Cleanup],
    on_error: OnError = _raise,
    *,
    running: Optional[Dict[str, Any]] = None,
    current: Callable[[], bool] = lambda: True,
) -> Dict[str, Cleanup]:
    """Reconcile the running effects with ``record.next.effects``.

    ``active`` maps effect ids to the cleanup returned by their handler (or
    None) and is updated in place, so dispatches made from inside a handler
    see the effects started so far. Handler and cleanup failures are passed to
    ``on_error`` and the remaining ids are still reconciled. A failed start
    leaves no active entry for that id but keeps its args in ``running``, so
    it is not retried until its args change.

    ``running`` maps effect ids to the args they were started with and
    defaults to a copy of ``record.prev.effects``. A machine passes its own
    map so that a nested reconcile diffs against what actually runs.

    Reconciliation stops as soon as ``current()`` turns false, which happens
    when a nested dispatch has reconciled a newer state or the machine was
    destroyed.

    Returns ``active``.
    """
    if running is None:
        running = dict(record.prev.effects)
    next_effects = record.next.effects
    effect_ids = list(dict.fromkeys([*active, *running, *next_effects]))

    for effect_id in effect_ids:
        if not current():
            break

        if effect_id in next_effects and (
            effect_id not in running or next_effects[effect_id] != running[effect_id]
        ):
            running.pop(effect_id, None)
            _call_cleanup(spec, effect_id, active.pop(effect_id, None), on_error)

            args = next_effects[effect_id]
            starting = object()
            active[effect_id] = starting  # type: ignore[assignment]
            running[effect_id] = args
            try:
                cleanup = run_effect(spec, fsm, record, effect_id, args)
            except FinityError as e:
                if active.get(effect_id) is starting:
                    del active[effect_id]
                on_error(e)
                continue
            except Exception as e:
                if active.get(effect_id) is starting:
                    del active[effect_id]
                on_error(_handler_error("handler", spec, effect_id, e))
                continue

            if active.get(effect_id) is starting:
                active[effect_id] = cleanup
            else:
                # Stopped while starting, by a nested dispatch or destroy().
                _call_cleanup(spec, effect_id, cleanup, on_error)

        elif effect_id not in next_effects:
            running.pop(effect_id, None)
            if effect_id in active:
                _call_cleanup(spec, effect_id, active.pop(effect_id), on_error)

    return active


def run_cleanups(spec: Spec, active: Dict[str, Cleanup], on_error: OnError = _raise) -> None:
    """Invoke every active cleanup and empty ``active``."""
    entries = list(active.items())
    active.clear()
    for effect_id, cleanup in entries:
        _call_cleanup(spec, effect_id, cleanup, on_error)
