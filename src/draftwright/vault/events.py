from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from draftwright.vault.store import normalize_path

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    METADATA_CHANGED = "metadata_changed"


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """A change notification delivered by the document store.

    ``old_path`` is set only for ``renamed``. ``is_folder`` marks events about
    folders rather than files (folder renames move every file beneath them).
    """

    kind: EventKind
    path: str
    old_path: str | None = None
    is_folder: bool = False

    @staticmethod
    def created(path: str) -> VaultEvent:
        return VaultEvent(EventKind.CREATED, normalize_path(path))

    @staticmethod
    def modified(path: str) -> VaultEvent:
        return VaultEvent(EventKind.MODIFIED, normalize_path(path))

    @staticmethod
    def deleted(path: str, *, is_folder: bool = False) -> VaultEvent:
        return VaultEvent(EventKind.DELETED, normalize_path(path), is_folder=is_folder)

    @staticmethod
    def renamed(old_path: str, new_path: str, *, is_folder: bool = False) -> VaultEvent:
        return VaultEvent(
            EventKind.RENAMED,
            normalize_path(new_path),
            old_path=normalize_path(old_path),
            is_folder=is_folder,
        )

    @staticmethod
    def metadata_changed(path: str) -> VaultEvent:
        return VaultEvent(EventKind.METADATA_CHANGED, normalize_path(path))


EventHandler = Callable[[VaultEvent], None]


class EventBus:
    """Deliver notifications to subscribers in delivery order.

    Publishing is serialized: an event is fully handled by every subscriber
    before the next one is dispatched. A subscriber that raises is logged and
    does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._lock = threading.RLock()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: VaultEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "Vault event handler failed",
                        extra={"kind": event.kind.value, "path": event.path},
                    )
