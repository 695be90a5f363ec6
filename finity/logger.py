from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

_machine_id: ContextVar[str] = ContextVar("fsm_id", default="-")


@contextmanager
def machine_scope(fsm_id: Any) -> Iterator[None]:
    """Tag log records emitted inside the block with ``fsm_id``."""
    token = _machine_id.set(str(fsm_id))
    try:
        yield
    finally:
        _machine_id.reset(token)


def current_machine_id() -> str:
    return _machine_id.get()


class MachineIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.fsm_id = _machine_id.get()
        return True


def get_logger(name: str = "finity", level: int = logging.INFO) -> logging.Logger:
    """Return a logger configured with a machine-id filter and sane handler behavior."""
    logger = logging.getLogger(name)

    # Avoid duplicated handlers if called multiple times.
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - fsm=%(fsm_id)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.addFilter(MachineIdFilter())
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger
