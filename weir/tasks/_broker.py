"""Broker detection for Dramatiq actors.

``@dramatiq.actor`` binds to the global broker when the decorator runs, so
``weir.tasks.actors`` calls :func:`ensure_broker_configured` before declaring
its actors. Outside tests a real broker must be configured first.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

_BROKER_LOCK = threading.Lock()
_broker_configured = False

_STUB_ENV = "WEIR_ALLOW_STUB_BROKER"
_PYTEST_ENV_KEYS = ("PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS")


def _is_running_tests() -> bool:
    """Return ``True`` when pytest is loaded or has set its environment."""
    return "pytest" in sys.modules or any(key in os.environ for key in _PYTEST_ENV_KEYS)


def _should_use_stub_broker() -> bool:
    """Return ``True`` under pytest or when ``WEIR_ALLOW_STUB_BROKER`` is truthy."""
    allow_stub = os.environ.get(_STUB_ENV, "")
    return allow_stub.lower() in {"1", "true", "yes"} or _is_running_tests()


def ensure_broker_configured() -> None:
    """Ensure a Dramatiq broker exists before an actor runs.

    Idempotent and safe to call from concurrent worker threads.

    Raises
    ------
    RuntimeError
        If no broker is configured and a stub broker is not allowed.

    """
    global _broker_configured

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:  # pragma: no cover - exercised in tests and CLI usage
            current_broker = dramatiq.get_broker()
        except (ImportError, LookupError):
            # ImportError: the default broker's client library is missing
            current_broker = None

        if current_broker is None:
            if _should_use_stub_broker():
                dramatiq.set_broker(StubBroker())
            else:  # pragma: no cover - guard for prod misconfigurations
                message = (
                    "No Dramatiq broker configured. "
                    f"Set {_STUB_ENV}=1 for local/test runs or configure a real broker."
                )
                raise RuntimeError(message)

        _broker_configured = True
