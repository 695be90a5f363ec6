"""Live machines created from a spec.

Quick Start:
    from finity import create_machine

    fsm = create_machine(spec)
    unsubscribe = fsm.subscribe(lambda record: print(record.next.state))
    fsm.dispatch("next")
    fsm.destroy()

:class:`StateMachine` is the interface every machine implements;
:class:`Machine` is the in-process implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

from .effects import Cleanup, reconcile, run_cleanups
from .error_channel import ErrorChannel
from .errors import (
    DefinitionError,
    ErrorContext,
    FinityError,
    HandlerError,
    machine_destroyed,
)
from .logger import get_logger, machine_scope
from .spec import CREATE, DESTROY, DESTROYED, Spec, StateValue
from .transition import TransitionRecord, create_transition, transition_state

Listener = Callable[[TransitionRecord], Any]


@dataclass(frozen=True)
class InternalState:
    """Snapshot of a machine's bookkeeping, for debugging and adapters."""

    subscribers: Tuple[Listener, ...]
    cleanups: Dict[str, Cleanup]


@runtime_checkable
class StateMachine(Protocol):
    """Interface shared by every machine implementation."""

    @property
    def value(self) -> StateValue: ...

    @property
    def destroyed(self) -> bool: ...

    def internal_state(self) -> InternalState: ...

    def dispatch(self, action: Any) -> Optional[TransitionRecord]: ...

    def subscribe(self, listener: Listener) -> Callable[[], None]: ...

    def destroy(self) -> "StateMachine": ...

    def get(self, key: str, default: Any = None) -> Any: ...


class Machine:
    """Single-process machine holding one state value, its subscribers, and
    the cleanups of its running effects.

    Use :func:`create_machine` rather than constructing one directly.
    """

    def __init__(
        self,
        spec: Spec,
        initial: StateValue,
        *,
        error_channel: Optional[ErrorChannel] = None,
        logger: Any = None,
    ) -> None:
        self.spec = spec
        self.logger = logger or get_logger("finity")
        self.errors = error_channel or ErrorChannel(logger=self.logger)
        self._current = initial
        # dict keys as an insertion-ordered set
        self._subscribers: Dict[Listener, None] = {}
        self._cleanups: Dict[str, Cleanup] = {}
        # args each active effect was started with
        self._running: Dict[str, Any] = {}
        self._destroying = False
        self._destroyed = False

    def __repr__(self) -> str:
        return f"Machine({self.spec.id!r}, state={self._current.state!r})"

    # --- reads ---

    @property
    def value(self) -> StateValue:
        return self._current

    @property
    def state(self) -> str:
        return self._current.state

    @property
    def context(self) -> Dict[str, Any]:
        return self._current.context

    @property
    def effects(self) -> Dict[str, Any]:
        return self._current.effects

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def get(self, key: str, default: Any = None) -> Any:
        """Read a context field, falling back to ``default``."""
        return self._current.context.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._current.context[key]

    def internal_state(self) -> InternalState:
        self._assert_alive("read internal state")
        return InternalState(
            subscribers=tuple(self._subscribers),
            cleanups=dict(self._cleanups),
        )

    # --- lifecycle ---

    def _assert_alive(self, operation: str) -> None:
        if self._destroyed:
            raise machine_destroyed(self.spec.id, operation)

    def _start(self) -> None:
        """Start the initial state's effects, then dispatch ``fsm/create``."""
        initial = self._current
        if initial.effects:
            with machine_scope(self.spec.id), self.errors.hold():
                self._reconcile(
                    create_transition(
                        StateValue(initial.state, initial.context, {}), initial, {"type": CREATE}
                    )
                )
        self.dispatch(CREATE)

    def _reconcile(self, record: TransitionRecord) -> None:
        """Bring the running effects in line with ``record.next``."""
        target = record.next
        if target.effects == self._running:
            return
        baseline = create_transition(
            StateValue(target.state, target.context, dict(self._running)),
            target,
            record.action,
            record.at,
        )
        reconcile(
            self.spec,
            self,
            baseline,
            self._cleanups,
            on_error=self.errors.report,
            running=self._running,
            current=lambda: not self._destroyed and self._current is target,
        )

    def _notify(self, listener: Listener, record: TransitionRecord) -> None:
        try:
            listener(record)
        except FinityError as e:
            self.errors.report(e)
        except Exception as e:
            self.errors.report(self._wrap(e, "subscriber", record.action.get("type")))

    def _wrap(self, error: Exception, phase: str, action_type: Any) -> HandlerError:
        ctx = ErrorContext().add("spec", self.spec.id).add("state", self._current.state)
        ctx.add("action", action_type)
        wrapped = HandlerError(
            f"{phase.capitalize()} failed during dispatch: {error}",
            phase=phase,
            why=f"{type(error).__name__} raised inside a {phase}.",
            fix="See the chained exception for the traceback.",
            context=ctx,
        )
        wrapped.__cause__ = error
        return wrapped

    def dispatch(self, action: Any) -> Optional[TransitionRecord]:
        """Dispatch an action (mapping with a ``type``, or a bare action id).

        Returns the TransitionRecord, or None when the action was ignored or
        failed. Failures are delivered through ``self.errors`` instead of
        being raised; a committed state is never rolled back.

        Raises:
            LifecycleError: The machine was destroyed.
        """
        self._assert_alive("dispatch")

        with machine_scope(self.spec.id), self.errors.hold():
            try:
                record = transition_state(self.spec, self._current, action, logger=self.logger)
            except FinityError as e:
                self.errors.report(e)
                return None
            except Exception as e:
                action_type = action.get("type") if isinstance(action, Mapping) else action
                self.errors.report(self._wrap(e, "transition", action_type))
                return None

            if record is None:
                return None

            self._current = record.next
            self.logger.debug(
                "%s -> %s on %r", record.prev.state, record.next.state, record.action["type"]
            )

            for listener in list(self._subscribers):
                self._notify(listener, record)

            if self._destroyed:
                return record

            # A nested dispatch from a subscriber has already reconciled a newer state.
            if self._current is record.next:
                self._reconcile(record)

            return record

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Add ``listener``; returns a function that removes it again."""
        self._assert_alive("subscribe")
        self._subscribers[listener] = None

        def unsubscribe() -> None:
            self._subscribers.pop(listener, None)

        return unsubscribe

    def destroy(self) -> "Machine":
        """Run ``fsm/destroy``, enter the terminal state, and stop every effect.

        Subscribers registered before the call receive the terminal record
        exactly once. Afterwards dispatch/subscribe/destroy raise LifecycleError.
        """
        self._assert_alive("destroy")
        if self._destroying:
            raise machine_destroyed(self.spec.id, "destroy")
        self._destroying = True

        subscribers = list(self._subscribers)
        terminal = create_transition(
            self._current, StateValue(state=DESTROYED), {"type": DESTROY}
        )

        # A spec-defined fsm/destroy transition must not notify twice.
        self._subscribers.clear()
        self.dispatch(DESTROY)

        self._current = terminal.next
        self._destroyed = True
        self._subscribers.clear()

        with machine_scope(self.spec.id), self.errors.hold():
            for listener in subscribers:
                self._notify(listener, terminal)
            run_cleanups(self.spec, self._cleanups, on_error=self.errors.report)
            self._running.clear()

        self.logger.debug("Machine %r destroyed", self.spec.id)
        return self


def create_machine(
    spec: Spec,
    initial: Union[str, Mapping[str, Any], StateValue, None] = None,
    *,
    error_channel: Optional[ErrorChannel] = None,
    logger: Any = None,
) -> Machine:
    """Create a live machine from ``spec``.

    Args:
        spec: The machine spec. It is frozen by this call.
        initial: Optional override merged over the spec's initial state
                 (top-level ``state``/``context``/``effects`` keys).
        error_channel: Where dispatch failures are delivered.
        logger: logging.Logger-like.

    Raises:
        DefinitionError: Neither the spec nor ``initial`` names a state.
        ValidationError: The effective initial state fails validation.
    """
    merged: Dict[str, Any] = {"context": {}, "effects": {}}
    if spec.initial is not None:
        merged.update(spec.initial.to_dict())
    if isinstance(initial, str):
        merged["state"] = initial
    elif isinstance(initial, StateValue):
        merged.update(initial.to_dict())
    elif initial is not None:
        merged.update(initial)

    if "state" not in merged:
        raise DefinitionError(
            f"Spec {spec.id!r} has no initial state",
            why="Neither spec.set_initial() nor the 'initial' argument named a state.",
            fix="Call spec.set_initial('state_id') or pass initial='state_id'.",
            context=ErrorContext().add("spec", spec.id),
        )

    value = spec.init_state(merged)
    spec.freeze()

    machine = Machine(spec, value, error_channel=error_channel, logger=logger)
    machine._start()
    return machine
