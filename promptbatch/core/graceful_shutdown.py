"""Signal-aware shutdown helper that stops the active batch run."""

from __future__ import annotations

import asyncio
import signal
from typing import Callable, Iterable, List


class GracefulShutdown:
    def __init__(self, on_trigger: Callable[[], None] | None = None) -> None:
        self._event = asyncio.Event()
        self._on_trigger = on_trigger
        self._installed: List[int] = []

    def install(self, signals: Iterable[int] | None = None) -> None:
        loop = asyncio.get_running_loop()
        targets = list(signals) if signals is not None else [signal.SIGINT, signal.SIGTERM]
        for sig in targets:
            try:
                loop.add_signal_handler(sig, self.trigger)
            except (NotImplementedError, RuntimeError):  # pragma: no cover - windows / non-main thread
                continue
            self._installed.append(sig)

    def uninstall(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def trigger(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        if self._on_trigger is not None:
            self._on_trigger()

    @property
    def event(self) -> asyncio.Event:
        return self._event

    def is_triggered(self) -> bool:
        return self._event.is_set()


__all__ = ["GracefulShutdown"]
