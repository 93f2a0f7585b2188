# src/wizard_tasks/messaging/broker.py

"""
Message broker between execution contexts and UI clients.

- Fire-and-forget: post()/broadcast() never wait for, or learn about, receivers.
- No addressing: a broadcast reaches every connected client.
- `controlled` records whether the active context has taken a client over; it never
  gates delivery, so clients keep receiving events while no context is active.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from .messages import Message

logger = logging.getLogger(__name__)

ClientCallback = Callable[[Message], None]


@dataclass(slots=True, eq=False)
class ClientHandle:
    """A connected UI client. disconnect() is idempotent."""

    client_id: int
    callback: ClientCallback
    connected: bool = True
    controlled: bool = False
    _broker: MessageBroker | None = field(default=None, repr=False)

    def disconnect(self) -> None:
        if not self.connected:
            return
        self.connected = False
        if self._broker is not None:
            self._broker._remove(self)

    # Lets the handle double as the unsubscribe callable handed to UI code.
    def __call__(self) -> None:
        self.disconnect()


class MessageBroker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: list[ClientHandle] = []
        self._ids = itertools.count(1)
        self._controller: str | None = None
        self._context_inbox: Callable[[Message], None] | None = None

    # ---- UI clients ----

    def connect(self, callback: ClientCallback) -> ClientHandle:
        with self._lock:
            handle = ClientHandle(
                client_id=next(self._ids),
                callback=callback,
                controlled=self._controller is not None,
                _broker=self,
            )
            self._clients.append(handle)
        logger.debug("Client %s connected (controlled=%s)", handle.client_id, handle.controlled)
        return handle

    def _remove(self, handle: ClientHandle) -> None:
        with self._lock:
            if handle in self._clients:
                self._clients.remove(handle)
        logger.debug("Client %s disconnected", handle.client_id)

    def clients(self) -> list[ClientHandle]:
        """Snapshot of currently connected clients."""
        with self._lock:
            return list(self._clients)

    def claim(self, controller: str) -> int:
        """Take control of every connected client now, without waiting for them to reconnect."""
        with self._lock:
            self._controller = controller
            claimed = 0
            for handle in self._clients:
                if not handle.controlled:
                    handle.controlled = True
                    claimed += 1
        logger.info("Context %s claimed %d client(s)", controller, claimed)
        return claimed

    def release(self, controller: str) -> None:
        with self._lock:
            if self._controller == controller:
                self._controller = None

    @property
    def controller(self) -> str | None:
        return self._controller

    def broadcast(self, message: Message) -> int:
        """
        Deliver message to every connected client (at most once, best effort).

        Iterates a snapshot so callbacks may connect/disconnect clients freely.
        Returns the number of clients the message was handed to.
        """
        delivered = 0
        for handle in self.clients():
            if not handle.connected:
                continue
            try:
                handle.callback(message)
                delivered += 1
            except Exception:
                logger.exception("Client %s callback failed for %s", handle.client_id, message.type)
        return delivered

    # ---- context inbox ----

    def bind_context(self, inbox: Callable[[Message], None] | None) -> None:
        """Register where post() delivers context-bound messages (the background host)."""
        self._context_inbox = inbox

    def post(self, message: Message) -> bool:
        """Send a message to the background context. Returns False if nothing is listening."""
        inbox = self._context_inbox
        if inbox is None:
            logger.warning("No background context bound; dropping %s", message.type)
            return False
        inbox(message)
        return True
