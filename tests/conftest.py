from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Dict, List

import pytest

from finity import Spec
from finity.schema import Is


@pytest.fixture
def traffic_spec() -> Spec:
    spec = Spec("traffic")
    spec.state("red").state("yellow").state("green")
    spec.action("next")
    spec.transition(from_=["red"], actions=["next"], to="green")
    spec.transition(from_=["green"], actions=["next"], to="yellow")
    spec.transition(from_=["yellow"], actions=["next"], to="red")
    spec.set_initial("red")
    return spec


class EffectLog:
    """Records effect starts and cleanups in order."""

    def __init__(self) -> None:
        self.events: List[tuple] = []

    def starts(self, effect_id: str) -> List[Any]:
        return [args for kind, eid, args in self.events if kind == "start" and eid == effect_id]

    def cleanups(self, effect_id: str) -> List[Any]:
        return [args for kind, eid, args in self.events if kind == "cleanup" and eid == effect_id]

    def handler(self, effect_id: str):
        def run(ctx, args):
            self.events.append(("start", effect_id, args))

            def cleanup():
                self.events.append(("cleanup", effect_id, args))

            return cleanup

        return run


@pytest.fixture
def effect_log() -> EffectLog:
    return EffectLog()


@pytest.fixture
def fetcher_spec(effect_log: EffectLog) -> Spec:
    """idle --fetch--> pending --resolve/reject--> fulfilled/rejected --reset--> idle"""
    spec = Spec("fetcher")
    spec.state("idle")
    spec.state("pending", {"url": Is(str)})
    spec.state("fulfilled", {"data": Is(dict, list, str)})
    spec.state("rejected", {"error": Is(str)})
    spec.action("fetch", {"url": Is(str)})
    spec.action("resolve", {"data": Is(dict, list, str)})
    spec.action("reject", {"error": Is(str)})
    spec.action("reset")
    spec.effect("start-fetch", {"url": Is(str)}, effect_log.handler("start-fetch"))

    def fetch(prev, action) -> Dict[str, Any]:
        return {
            "state": "pending",
            "context": {"url": action["url"]},
            "effects": {"start-fetch": {"url": action["url"]}},
        }

    spec.transition(from_=["idle"], actions=["fetch"], to=["pending"], reducer=fetch)
    spec.transition(
        from_=["pending"],
        actions=["resolve"],
        to=["fulfilled"],
        reducer=lambda prev, action: {"state": "fulfilled", "context": {"data": action["data"]}},
    )
    spec.transition(
        from_=["pending"],
        actions=["reject"],
        to=["rejected"],
        reducer=lambda prev, action: {"state": "rejected", "context": {"error": action["error"]}},
    )
    spec.transition(from_=["fulfilled", "rejected"], actions=["reset"], to="idle")
    spec.set_initial("idle")
    return spec


@pytest.fixture
def traffic_yaml(tmp_path: Path) -> Path:
    p = tmp_path / "traffic.yaml"
    p.write_text(
        textwrap.dedent(
            """\
            id: traffic
            initial: red
            states:
              red: {}
              yellow: {}
              green: {}
            actions:
              next: {}
            transitions:
              - {from: [red], actions: [next], to: green}
              - {from: [green], actions: [next], to: yellow}
              - {from: [yellow], actions: [next], to: red}
            """
        ),
        encoding="utf-8",
    )
    return p


@pytest.fixture
def counter_yaml(tmp_path: Path) -> Path:
    """A document whose reducer, effect, and schema come from fixture_machines."""
    p = tmp_path / "counter.yaml"
    p.write_text(
        textwrap.dedent(
            """\
            id: counter
            initial:
              state: counting
              context: {count: 0}
            options:
              exhaustive: false
            states:
              counting: {count: int}
              done: {label: "str?"}
            actions:
              increment: {by: "fixture_machines:positive_int?"}
              finish: {}
            effects:
              announce:
                args: {count: int}
                do: "fixture_machines:announce"
            transitions:
              - {from: [counting], actions: [increment], to: [counting], do: "fixture_machines:increment"}
              - {from: [counting], actions: [finish], to: done}
            """
        ),
        encoding="utf-8",
    )
    return p
