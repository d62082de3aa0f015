"""
Store change notifications.

Stores publish a StoreEvent after every write. The controller subscribes and
translates events into reconcile keys. Listeners run synchronously in the
writer's thread, so they must be cheap and must not write back to the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional


@dataclass(frozen=True)
class StoreEvent:
    """
    One change notification.

    kind is one of switch, facts, pool, assignment, config.
    name is the key of the changed record.
    chassis_id is set for switch and assignment events.
    labels is set for pool events, and carries the switch selector for config
    events.
    """

    kind: str
    name: str
    chassis_id: str = ""
    labels: Dict[str, str] = field(default_factory=dict)


Listener = Callable[[StoreEvent], None]


class Notifier:
    """Listener bookkeeping shared by the stores."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            listener(event)


def labels_match(labels: Dict[str, str], selector: Optional[Dict[str, str]]) -> bool:
    """True when every selector key is present with the same value."""
    if not selector:
        return True
    return all(labels.get(k) == v for k, v in selector.items())
