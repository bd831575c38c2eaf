"""
EventRouter - in-process routing table from channel names to callbacks

Channels used by the protocol services:
  - "command:<id>"  completion of one issued command (one-shot listeners)
  - "status:<id>"   new value of one property document
  - "status:*"      every property creation or change

Threading: the table is guarded by a lock. One-shot listeners are removed
under the lock before delivery, so two concurrent emits on the same channel
can never both deliver to them. Callbacks run outside the lock, in the
emitting thread, in registration order.
"""

import logging
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

WILDCARD_STATUS = "status:*"


def command_channel(document_id: str) -> str:
    return f"command:{document_id}"


def status_channel(document_id: str) -> str:
    return f"status:{document_id}"


class _Listener:
    __slots__ = ("callback", "once")

    def __init__(self, callback: Callable, once: bool):
        self.callback = callback
        self.once = once


class EventRouter:
    """Channel → ordered listeners, safe to use from feed threads"""

    def __init__(self):
        self._channels: Dict[str, List[_Listener]] = {}
        self._lock = threading.Lock()

    def on(self, channel: str, callback: Callable) -> None:
        """Attach ``callback`` to every future emit on ``channel``."""
        with self._lock:
            self._channels.setdefault(channel, []).append(_Listener(callback, once=False))

    def once(self, channel: str, callback: Callable) -> None:
        """Attach ``callback`` to the next emit on ``channel`` only."""
        with self._lock:
            self._channels.setdefault(channel, []).append(_Listener(callback, once=True))

    def off(self, channel: str, callback: Callable) -> bool:
        """Detach ``callback`` from ``channel``. Returns False if it was not attached.

        Callbacks are matched by equality, so a bound method detaches even
        when passed as a fresh attribute lookup.
        """
        with self._lock:
            listeners = self._channels.get(channel, [])
            for listener in listeners:
                if listener.callback == callback:
                    listeners.remove(listener)
                    if not listeners:
                        del self._channels[channel]
                    return True
        return False

    def listener_count(self, channel: str) -> int:
        with self._lock:
            return len(self._channels.get(channel, []))

    def emit(self, channel: str, *args) -> int:
        """Deliver ``args`` to the listeners of ``channel``.

        Returns the number of callbacks invoked. A callback that raises is
        logged and does not prevent delivery to the others.
        """
        with self._lock:
            listeners = self._channels.get(channel)
            if not listeners:
                return 0
            delivered = list(listeners)
            remaining = [listener for listener in listeners if not listener.once]
            if remaining:
                self._channels[channel] = remaining
            else:
                del self._channels[channel]

        for listener in delivered:
            try:
                listener.callback(*args)
            except Exception as e:
                logger.error(f"Error in listener for {channel}: {e}", exc_info=True)
        return len(delivered)
