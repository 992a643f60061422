"""Process-wide registry of Steps, keyed by identifier.

Follows a simple registry pattern:
- in-memory dict keyed by step id
- built-ins registered at startup, user-script steps added and removed by the
  script observer
- readers take :meth:`StepRegistry.snapshot` when a Workflow starts running
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from types import MappingProxyType

from draftwright.compile.steps import StepDefinition

logger = logging.getLogger(__name__)

RegistryListener = Callable[[str], None]


class StepRegistry:
    def __init__(self) -> None:
        self._steps: dict[str, StepDefinition] = {}
        self._listeners: list[RegistryListener] = []
        self._lock = threading.RLock()

    def register(self, step: StepDefinition) -> None:
        """Insert or replace ``step`` under its id.

        Listeners are called after the registry lock is released.
        """

        with self._lock:
            replaced = step.id in self._steps
            self._steps[step.id] = step
            listeners = list(self._listeners)
        logger.debug(
            "Step registered",
            extra={"step_id": step.id, "source": step.source, "replaced": replaced},
        )
        self._notify(listeners, step.id)

    def unregister(self, step_id: str) -> bool:
        with self._lock:
            removed = self._steps.pop(step_id, None)
            listeners = list(self._listeners)
        if removed is None:
            return False
        logger.debug("Step unregistered", extra={"step_id": step_id})
        self._notify(listeners, step_id)
        return True

    def resolve(self, step_id: str) -> StepDefinition | None:
        with self._lock:
            return self._steps.get(step_id)

    def __contains__(self, step_id: object) -> bool:
        with self._lock:
            return step_id in self._steps

    def list_steps(self) -> list[StepDefinition]:
        with self._lock:
            return sorted(self._steps.values(), key=lambda s: (s.is_user_script, s.id))

    def snapshot(self) -> Mapping[str, StepDefinition]:
        """A read-only copy of the registry as of now."""

        with self._lock:
            return MappingProxyType(dict(self._steps))

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @staticmethod
    def _notify(listeners: list[RegistryListener], step_id: str) -> None:
        for listener in listeners:
            try:
                listener(step_id)
            except Exception:
                logger.exception("Step registry listener failed", extra={"step_id": step_id})
