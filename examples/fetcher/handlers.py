"""Reducers and effect handlers for the fetcher example."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict

from finity import EffectContext, StateValue

RESPONSES: Dict[str, Any] = {
    "https://example.com/users": [{"id": 1, "name": "ada"}, {"id": 2, "name": "grace"}],
}


def fetch(prev: StateValue, action: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "state": "pending",
        "context": {"url": action["url"]},
        "effects": {"start-fetch": {"url": action["url"], "delay": 0.05}},
    }


def resolve(prev: StateValue, action: Dict[str, Any]) -> Dict[str, Any]:
    return {"state": "fulfilled", "context": {"url": prev.context["url"], "data": action["data"]}}


def reject(prev: StateValue, action: Dict[str, Any]) -> Dict[str, Any]:
    return {"state": "rejected", "context": {"url": prev.context["url"], "error": action["error"]}}


def start_fetch(ctx: EffectContext, args: Dict[str, Any]) -> Callable[[], None]:
    """Pretend to fetch ``args["url"]`` on the running loop.

    Returns a cleanup that cancels the request if the machine leaves
    ``pending`` first.
    """
    loop = asyncio.get_running_loop()

    def complete() -> None:
        if args["url"] in RESPONSES:
            ctx.dispatch({"type": "resolve", "data": RESPONSES[args["url"]]})
        else:
            ctx.dispatch({"type": "reject", "error": f"404: {args['url']}"})

    handle = loop.call_later(args["delay"], complete)
    return handle.cancel
