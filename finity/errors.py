"""Finity error types with structured, actionable messages.

Error Contract:
Every user-facing error includes:
- What happened (one sentence, plain English)
- Why (root cause, not stack trace)
- Fix (specific, actionable)
- Context (relevant ids/paths, trimmed)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

if TYPE_CHECKING:
    from .schema import SchemaError


@dataclass
class ErrorContext:
    """Structured context for error messages."""

    items: Dict[str, Any] = field(default_factory=dict)

    def add(self, key: str, value: Any) -> "ErrorContext":
        """Add a context item, returning self for chaining."""
        self.items[key] = value
        return self

    def format(self) -> str:
        """Format context as indented key=value lines."""
        if not self.items:
            return ""
        lines = [f"  {k}={v!r}" for k, v in self.items.items()]
        return "\n".join(lines)


class FinityError(Exception):
    """Base exception for finity with structured error messages.

    Attributes:
        what: One-sentence description of what happened
        why: Root cause explanation
        fix: Actionable fix suggestion
        context: Relevant debugging context
    """

    def __init__(
        self,
        what: str,
        *,
        why: Optional[str] = None,
        fix: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        self.what = what
        self.why = why
        self.fix = fix
        self.context = context or ErrorContext()

        message = self._format_message()
        super().__init__(message)

    def _format_message(self) -> str:
        lines = [self.what]

        if self.why:
            lines.append(f"\nWhy: {self.why}")

        if self.fix:
            lines.append(f"\nFix: {self.fix}")

        ctx = self.context.format()
        if ctx:
            lines.append(f"\nContext:\n{ctx}")

        return "".join(lines)


class DefinitionError(FinityError):
    """The machine spec is malformed: duplicate or unknown ids, bad documents."""

    pass


class ValidationError(FinityError):
    """A state, action, or effect payload failed its schema."""

    def __init__(
        self,
        what: str,
        *,
        kind: str,
        id: Any,
        schema_error: Optional["SchemaError"] = None,
        why: Optional[str] = None,
        fix: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        self.kind = kind
        self.id = id
        self.schema_error = schema_error
        self.issues = list(schema_error.issues) if schema_error is not None else []
        super().__init__(what, why=why, fix=fix, context=context)


class TransitionNotFoundError(FinityError):
    """No transition is defined for the state/action pair (exhaustive mode)."""

    pass


class IllegalDestinationError(FinityError):
    """A reducer returned a state outside its declared destinations."""

    pass


class LifecycleError(FinityError):
    """An operation was attempted on a destroyed machine."""

    pass


class HandlerError(FinityError):
    """A reducer, effect handler, cleanup, or subscriber raised during dispatch.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, what: str, *, phase: str, **kwargs: Any):
        self.phase = phase
        super().__init__(what, **kwargs)


class ConfigError(FinityError):
    """Error loading or validating a machine document from YAML."""

    pass


class ImportError_(FinityError):
    """Error importing a dotted path symbol."""

    pass


# --- Helper constructors for common errors ---


def _shown(ids: Iterable[Any]) -> str:
    ids = [str(i) for i in ids]
    shown = ids[:5]
    text = ", ".join(shown)
    if len(ids) > 5:
        text += f" (+{len(ids) - 5} more)"
    return text or "(none)"


def already_defined(kind: str, id: Any, spec_id: Any = None) -> DefinitionError:
    """A state, action, or effect id was registered twice."""
    ctx = ErrorContext()
    if spec_id is not None:
        ctx.add("spec", spec_id)
    ctx.add(kind, id)

    return DefinitionError(
        f"{kind.capitalize()} already defined: {id!r}",
        why=f"Each {kind} id may only be registered once per spec.",
        fix=f"Remove the duplicate {kind} registration or choose a different id.",
        context=ctx,
    )


def not_registered(kind: str, id: Any, known: Iterable[Any], spec_id: Any = None) -> DefinitionError:
    """A transition or initial state references an id that was never registered."""
    known = sorted(str(k) for k in known)
    ctx = ErrorContext()
    if spec_id is not None:
        ctx.add("spec", spec_id)
    ctx.add(kind, id)
    ctx.add(f"known_{kind}s", known[:5])

    return DefinitionError(
        f"Unknown {kind}: {id!r}",
        why=f"The {kind} is referenced before it was registered on the spec.",
        fix=f"Register the {kind} first. Known {kind}s: {_shown(known)}",
        context=ctx,
    )


def transition_already_defined(state: Any, action: Any, spec_id: Any = None) -> DefinitionError:
    """A (state, action) pair already has a transition."""
    ctx = ErrorContext()
    if spec_id is not None:
        ctx.add("spec", spec_id)
    ctx.add("state", state).add("action", action)

    return DefinitionError(
        f"Transition already defined for state {state!r} and action {action!r}",
        why="Only one reducer may handle an action in a given state.",
        fix="Merge both transitions into one reducer, or remove the duplicate.",
        context=ctx,
    )


def spec_frozen(spec_id: Any) -> DefinitionError:
    """The spec was modified after a machine was created from it."""
    return DefinitionError(
        f"Spec {spec_id!r} is frozen",
        why="A machine has already been created from this spec, so it can no longer change.",
        fix="Finish registering states, actions, effects, and transitions before create_machine().",
        context=ErrorContext().add("spec", spec_id),
    )


def invalid_payload(kind: str, id: Any, schema_error: "SchemaError", spec_id: Any = None) -> ValidationError:
    """A payload failed the schema registered for its id."""
    ctx = ErrorContext()
    if spec_id is not None:
        ctx.add("spec", spec_id)
    ctx.add(kind, id)
    ctx.add("issues", [str(issue) for issue in schema_error.issues])

    return ValidationError(
        f"Invalid {kind}: {id!r}",
        kind=kind,
        id=id,
        schema_error=schema_error,
        why=schema_error.format(),
        fix=f"Make the {kind} match the schema it was registered with.",
        context=ctx,
    )


def unknown_payload(kind: str, id: Any, known: Iterable[Any], spec_id: Any = None) -> ValidationError:
    """A payload references an id with no registered schema."""
    known = sorted(str(k) for k in known)
    ctx = ErrorContext()
    if spec_id is not None:
        ctx.add("spec", spec_id)
    ctx.add(kind, id)

    return ValidationError(
        f"No {kind} registered for {id!r}",
        kind=kind,
        id=id,
        why=f"Only registered {kind}s can be validated.",
        fix=f"Register the {kind} on the spec. Known {kind}s: {_shown(known)}",
        context=ctx,
    )


def illegal_destination(state: Any, action: Any, got: Any, allowed: Iterable[Any]) -> IllegalDestinationError:
    """A reducer produced a state outside its transition's destinations."""
    allowed = sorted(str(a) for a in allowed)
    ctx = ErrorContext()
    ctx.add("from_state", state).add("action", action)
    ctx.add("got", got).add("allowed", allowed)

    return IllegalDestinationError(
        f"Resulting state {got!r} was not in the allowed destinations {allowed!r}",
        why="The reducer returned a state its transition did not declare in 'to'.",
        fix="Fix the reducer, or add the state to the transition's 'to' list.",
        context=ctx,
    )


def transition_not_found(state: Any, action: Any, spec_id: Any = None) -> TransitionNotFoundError:
    """No transition handles the action in the current state (exhaustive mode)."""
    ctx = ErrorContext()
    if spec_id is not None:
        ctx.add("spec", spec_id)
    ctx.add("state", state).add("action", action)

    return TransitionNotFoundError(
        f"Transition not defined from state {state!r} on action {action!r}",
        why="The spec is exhaustive, so every dispatched action must have a transition.",
        fix="Add a transition for this pair, or disable the 'exhaustive' option.",
        context=ctx,
    )


def machine_destroyed(spec_id: Any, operation: str) -> LifecycleError:
    """An operation was attempted after destroy()."""
    ctx = ErrorContext().add("spec", spec_id).add("operation", operation)

    return LifecycleError(
        f"Cannot {operation}, this machine was destroyed",
        why="destroy() makes a machine permanently inert.",
        fix="Create a new machine with create_machine(spec).",
        context=ctx,
    )


def config_missing_field(field: str, path: Optional[str] = None) -> ConfigError:
    """Config is missing a required field."""
    ctx = ErrorContext()
    if path:
        ctx.add("config_path", path)
    ctx.add("field", field)

    return ConfigError(
        f"Config missing required field: '{field}'",
        why=f"The '{field}' field is required but was not found in the config.",
        fix=f"Add '{field}' to your config file.",
        context=ctx,
    )


def config_wrong_type(
    field: str, expected: str, got: str, path: Optional[str] = None
) -> ConfigError:
    """Config field has wrong type."""
    ctx = ErrorContext()
    if path:
        ctx.add("config_path", path)
    ctx.add("field", field)
    ctx.add("expected", expected)
    ctx.add("got", got)

    return ConfigError(
        f"Config field '{field}' has wrong type",
        why=f"Expected {expected}, but got {got}.",
        fix=f"Change '{field}' to be a {expected}.",
        context=ctx,
    )


def import_invalid_format(dotted_path: str) -> ImportError_:
    """Dotted path has invalid format."""
    ctx = ErrorContext()
    ctx.add("dotted_path", dotted_path)

    return ImportError_(
        f"Invalid dotted path format: '{dotted_path}'",
        why="Dotted paths must be in 'module:symbol' format.",
        fix="Use the format 'mypackage.module:my_reducer' (colon separates module from symbol).",
        context=ctx,
    )


def import_module_not_found(module: str, dotted_path: str) -> ImportError_:
    """Module in dotted path not found."""
    ctx = ErrorContext()
    ctx.add("module", module)
    ctx.add("dotted_path", dotted_path)

    return ImportError_(
        f"Module not found: '{module}'",
        why="The module specified in the dotted path could not be imported.",
        fix="Check that the module exists and is on your Python path.\n"
        "You may need to install the package or add its directory to sys.path.",
        context=ctx,
    )


def import_symbol_not_found(module: str, symbol: str, dotted_path: str) -> ImportError_:
    """Symbol not found in module."""
    ctx = ErrorContext()
    ctx.add("module", module)
    ctx.add("symbol", symbol)
    ctx.add("dotted_path", dotted_path)

    return ImportError_(
        f"Symbol '{symbol}' not found in module '{module}'",
        why="The module was imported successfully, but doesn't contain that symbol.",
        fix="Check the spelling of the function or schema name.\n"
        "Make sure it's defined at the top level of the module.",
        context=ctx,
    )


def import_not_callable(dotted_path: str, got_type: str, role: str) -> ImportError_:
    """Imported symbol cannot serve as a reducer or effect handler."""
    ctx = ErrorContext()
    ctx.add("dotted_path", dotted_path)
    ctx.add("got_type", got_type)
    ctx.add("role", role)

    return ImportError_(
        f"Not callable: '{dotted_path}'",
        why=f"A {role} must be a function, but got {got_type}.",
        fix=f"Point '{dotted_path}' at a top-level function.",
        context=ctx,
    )
