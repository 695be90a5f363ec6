#!/usr/bin/env python
"""
Fetcher Example

Demonstrates:
- Loading a machine document with reducers and effects from dotted paths
- Effects started by a transition and cleaned up by the next one
- Subscribing to transitions and to dispatch errors
- Destroying a machine with an effect still running

Run: python app.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Add the example directory to path so the document can find the handlers module
sys.path.insert(0, str(Path(__file__).parent))

from finity import ConfigLoader, create_machine, spec_to_diagram


async def main():
    spec = ConfigLoader.load_machine(Path(__file__).parent / "machine.yaml")

    print(spec_to_diagram(spec, direction="LR"))
    print()

    fsm = create_machine(spec)
    fsm.subscribe(lambda record: print(f"  {record.prev.state} -> {record.next.state}"))
    fsm.errors.subscribe(lambda error: print(f"  error: {error.what}"))

    print("Sending: fetch (known url)")
    fsm.dispatch({"type": "fetch", "url": "https://example.com/users"})
    await asyncio.sleep(0.1)
    print("Data:", fsm.get("data"))

    print("Sending: reset")
    fsm.dispatch("reset")

    print("Sending: fetch (unknown url)")
    fsm.dispatch({"type": "fetch", "url": "https://example.com/missing"})
    await asyncio.sleep(0.1)
    print("Error:", fsm.get("error"))

    print("Sending: reset, fetch, then destroy before the response")
    fsm.dispatch("reset")
    fsm.dispatch({"type": "fetch", "url": "https://example.com/users"})
    fsm.destroy()
    await asyncio.sleep(0.1)

    print(f"\nFinal state: {fsm.state}")


if __name__ == "__main__":
    asyncio.run(main())
