"""Flowchart export for machine specs.

Generates Mermaid source from a spec's registered transitions without
creating a machine.

Example:
    from finity import visualize

    print(visualize(spec, direction="LR"))
    # flowchart LR
    #     init([start])-->red
    #     red-->|next| green
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Union

from .spec import Spec, define

DIRECTIONS = ("TD", "TB", "BT", "LR", "RL")


def visualize(
    spec: Union[Spec, str, Path, Dict[str, Any]],
    *,
    format: str = "mermaid",
    direction: str = "TD",
) -> str:
    """Generate a diagram for a spec.

    Args:
        spec: A Spec, a path to a YAML machine document, or a document dict.
        format: Output format. Currently only "mermaid" is supported.
        direction: Mermaid flowchart direction (TD, TB, BT, LR, RL).

    Raises:
        ValueError: If format or direction is not supported.
    """
    if format != "mermaid":
        raise ValueError(f"Unsupported format: {format!r}. Use 'mermaid'.")

    if isinstance(spec, (str, Path)):
        from .config_loader import ConfigLoader

        spec = ConfigLoader.load_machine(spec)
    elif isinstance(spec, dict):
        spec = define(spec)

    return spec_to_diagram(spec, direction=direction)


def spec_to_diagram(spec: Spec, direction: str = "TD") -> str:
    """Render one ``init([start])-->INITIAL`` line, then one
    ``STATE-->|ACTION| DEST`` line per registered edge.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"Unsupported direction: {direction!r}. Use one of {', '.join(DIRECTIONS)}.")

    initial = spec.initial.state if spec.initial is not None else None

    lines: List[str] = [f"flowchart {direction}"]
    if initial is not None:
        lines.append(f"    init([start])-->{_sanitize_id(initial)}")

    for (state, action), entry in spec.transitions.items():
        label = str(action).replace("|", "/")
        for dest in sorted(entry.allowed_states):
            lines.append(f"    {_sanitize_id(state)}-->|{label}| {_sanitize_id(dest)}")

    return "\n".join(lines)


def _sanitize_id(name: str) -> str:
    """Convert a state id to a valid Mermaid node ID.

    Mermaid IDs should be alphanumeric with underscores or hyphens.
    """
    result = []
    for char in str(name):
        if char.isalnum() or char in "_-":
            result.append(char)
        else:
            result.append("_")
    return "".join(result) or "node"
