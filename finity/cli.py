from __future__ import annotations

import argparse
import os
import sys

from .config_loader import ConfigLoader
from .explain import explain
from .logger import get_logger
from .machine import create_machine
from .visualize import DIRECTIONS, spec_to_diagram


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="finity CLI")
    sub = p.add_subparsers(dest="command", required=True)

    diagram = sub.add_parser("diagram", help="Print a Mermaid flowchart of a machine document.")
    diagram.add_argument("--config", type=str, default=None, help="Path to machine YAML (or use FINITY_CONFIG).")
    diagram.add_argument("--direction", choices=DIRECTIONS, default="TD", help="Flowchart direction.")

    exp = sub.add_parser("explain", help="Describe a machine document and report problems.")
    exp.add_argument("--config", type=str, default=None, help="Path to machine YAML (or use FINITY_CONFIG).")

    run = sub.add_parser("run", help="Create a machine and dispatch actions in order.")
    run.add_argument("--config", type=str, default=None, help="Path to machine YAML (or use FINITY_CONFIG).")
    run.add_argument("actions", nargs="*", help="Action types to dispatch.")

    return p


def _resolve_config_path(cli_value: str | None) -> str:
    path = cli_value or os.getenv("FINITY_CONFIG")
    if not path:
        raise SystemExit("No config provided. Use --config or set FINITY_CONFIG.")
    return path


def cmd_diagram(args) -> int:
    spec = ConfigLoader.load_machine(_resolve_config_path(args.config))
    print(spec_to_diagram(spec, direction=args.direction))
    return 0


def cmd_explain(args) -> int:
    explanation = explain(_resolve_config_path(args.config))
    print(explanation.format())
    return 0 if explanation.is_valid else 1


def cmd_run(args) -> int:
    spec = ConfigLoader.load_machine(_resolve_config_path(args.config))
    logger = get_logger("finity")

    failures = []
    fsm = create_machine(spec, logger=logger)
    fsm.errors.subscribe(failures.append)
    print(fsm.state)

    for action in args.actions:
        seen = len(failures)
        record = fsm.dispatch(action)
        if record is None and len(failures) == seen:
            logger.info("Action %r ignored in state %r", action, fsm.state)
        print(fsm.state)

    fsm.destroy()
    for error in failures:
        print(error, file=sys.stderr)
    return 1 if failures else 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command == "diagram":
        code = cmd_diagram(args)
    elif args.command == "explain":
        code = cmd_explain(args)
    elif args.command == "run":
        code = cmd_run(args)
    else:
        raise SystemExit(2)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
