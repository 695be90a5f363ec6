"""Spec explanation and checks without side effects.

explain(spec) answers: "What does finity think this machine is, and are there
states or actions that can never be used?" without creating a machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from .errors import FinityError
from .spec import CREATE, DESTROY, Spec, define


@dataclass
class Diagnostic:
    """A single warning or error from spec explanation."""

    level: str  # "warning" or "error"
    what: str
    why: Optional[str] = None
    fix: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        """Format as structured message (matches FinityError format)."""
        lines = [f"[{self.level.upper()}] {self.what}"]
        if self.why:
            lines.append(f"Why: {self.why}")
        if self.fix:
            lines.append(f"Fix: {self.fix}")
        if self.context:
            ctx_lines = [f"  {k}={v!r}" for k, v in self.context.items()]
            lines.append("Context:\n" + "\n".join(ctx_lines))
        return "\n".join(lines)


@dataclass
class SpecExplanation:
    """Structured explanation of a machine spec."""

    source: str
    id: Optional[str] = None
    initial: Optional[str] = None
    states: List[str] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
    effects: List[str] = field(default_factory=list)
    edges: List[Tuple[str, str, str]] = field(default_factory=list)  # (from, action, to)
    options: Dict[str, Any] = field(default_factory=dict)

    warnings: List[Diagnostic] = field(default_factory=list)
    errors: List[Diagnostic] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True if the spec has no errors (warnings are ok)."""
        return len(self.errors) == 0

    def format(self) -> str:
        """Format as human-readable explanation."""
        lines = [
            "Finity Spec Explanation",
            "=" * 40,
            f"Source: {self.source}",
            "",
            "Machine:",
            f"  id: {self.id or '(missing)'}",
            f"  initial: {self.initial or '(missing)'}",
        ]
        for key, value in self.options.items():
            lines.append(f"  {key}: {value}")
        lines.append("")

        lines.append(f"States ({len(self.states)}):")
        lines.extend(f"  - {s}" for s in self.states)
        lines.append("")

        lines.append(f"Actions ({len(self.actions)}):")
        lines.extend(f"  - {a}" for a in self.actions)
        lines.append("")

        if self.effects:
            lines.append(f"Effects ({len(self.effects)}):")
            lines.extend(f"  - {e}" for e in self.effects)
            lines.append("")

        lines.append(f"Transitions ({len(self.edges)}):")
        lines.extend(f"  {src} --{action}--> {dest}" for src, action, dest in self.edges)
        lines.append("")

        if self.errors:
            lines.append("Errors:")
            lines.extend(e.format() for e in self.errors)
            lines.append("")
        if self.warnings:
            lines.append("Warnings:")
            lines.extend(w.format() for w in self.warnings)
            lines.append("")

        lines.append("Status: " + ("valid" if self.is_valid else "INVALID"))
        return "\n".join(lines)


def explain(spec: Union[Spec, str, Path, Dict[str, Any]]) -> SpecExplanation:
    """Explain a spec, a YAML machine document path, or a document dict.

    Loading problems are reported as errors instead of raised.
    """
    source = "(spec)"
    if isinstance(spec, (str, Path)):
        from .config_loader import ConfigLoader

        source = str(spec)
        try:
            spec = ConfigLoader.load_machine(spec)
        except FinityError as e:
            exp = SpecExplanation(source=source)
            exp.errors.append(_from_error(e))
            return exp
    elif isinstance(spec, dict):
        source = "(dict)"
        try:
            spec = define(spec)
        except FinityError as e:
            exp = SpecExplanation(source=source, id=spec.get("id"))
            exp.errors.append(_from_error(e))
            return exp

    return _explain_spec(spec, source)


def _from_error(e: FinityError) -> Diagnostic:
    return Diagnostic(level="error", what=e.what, why=e.why, fix=e.fix, context=dict(e.context.items))


def _explain_spec(spec: Spec, source: str) -> SpecExplanation:
    edges = [
        (state, action, dest)
        for (state, action), entry in spec.transitions.items()
        for dest in sorted(entry.allowed_states)
    ]
    exp = SpecExplanation(
        source=source,
        id=spec.id,
        initial=spec.initial.state if spec.initial is not None else None,
        states=list(spec.states),
        actions=[a for a in spec.actions if a not in (CREATE, DESTROY)],
        effects=list(spec.effects),
        edges=edges,
        options={"exhaustive": spec.options.exhaustive, "log_dispatch": spec.options.log_dispatch},
    )

    if exp.initial is None:
        exp.errors.append(
            Diagnostic(
                level="error",
                what="No initial state",
                why="create_machine() needs an initial state unless one is passed explicitly.",
                fix="Call spec.set_initial('state_id') or add 'initial' to the document.",
                context={"spec": spec.id},
            )
        )
        return exp

    reachable: Set[str] = {exp.initial}
    frontier = [exp.initial]
    while frontier:
        current = frontier.pop()
        for src, _action, dest in edges:
            if src == current and dest not in reachable:
                reachable.add(dest)
                frontier.append(dest)

    for state in exp.states:
        if state not in reachable:
            exp.warnings.append(
                Diagnostic(
                    level="warning",
                    what=f"State '{state}' is unreachable",
                    why=f"No chain of transitions leads to it from '{exp.initial}'.",
                    fix="Add a transition into the state, or remove it.",
                    context={"state": state},
                )
            )

    sources = {src for src, _action, _dest in edges}
    for state in exp.states:
        if state in reachable and state not in sources:
            exp.warnings.append(
                Diagnostic(
                    level="warning",
                    what=f"State '{state}' has no outgoing transitions",
                    why="Once entered, only destroy() can leave it.",
                    context={"state": state},
                )
            )

    used_actions = {action for _src, action, _dest in edges}
    for action in exp.actions:
        if action not in used_actions:
            exp.warnings.append(
                Diagnostic(
                    level="warning",
                    what=f"Action '{action}' is never handled",
                    why="No transition lists it, so dispatching it is always a no-op.",
                    fix="Add a transition for the action, or remove it.",
                    context={"action": action},
                )
            )

    return exp
