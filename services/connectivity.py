from __future__ import annotations

import logging
from typing import Callable, List

from core.logging_setup import LOGGER_NAME


Listener = Callable[[bool], None]

logger = logging.getLogger(LOGGER_NAME)


class ConnectivitySignal:
    """Online/authenticated flags with change notifications.

    Listeners receive the new ``ready`` value whenever it flips.
    """

    def __init__(self, online: bool = False, authenticated: bool = False) -> None:
        self._online = online
        self._authenticated = authenticated
        self._listeners: List[Listener] = []

    @property
    def online(self) -> bool:
        return self._online

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    @property
    def ready(self) -> bool:
        return self._online and self._authenticated

    def set_online(self, value: bool) -> None:
        before = self.ready
        self._online = bool(value)
        self._notify(before)

    def set_authenticated(self, value: bool) -> None:
        before = self.ready
        self._authenticated = bool(value)
        self._notify(before)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, before: bool) -> None:
        now = self.ready
        if now == before:
            return
        logger.info("Connectivity %s", "ready" if now else "lost")
        for listener in list(self._listeners):
            try:
                listener(now)
            except Exception:
                logger.exception("Connectivity listener failed")


__all__ = ["ConnectivitySignal"]
