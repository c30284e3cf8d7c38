from __future__ import annotations

import threading


class RunFlagView:
    """Read-only handle on the assistant's continuation flag."""

    def __init__(self, flag: "RunFlag"):
        self._flag = flag

    def is_running(self) -> bool:
        return self._flag.is_running()

    def wait_cleared(self, timeout: float) -> bool:
        return self._flag.wait_cleared(timeout)


class RunFlag:
    """
    The "should continue running" flag. Owned by the orchestrator; everything else
    receives a RunFlagView and can only observe it.
    """

    def __init__(self) -> None:
        self._running = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()

    def set_running(self) -> None:
        self._stopped.clear()
        self._running.set()

    def clear(self) -> None:
        self._running.clear()
        self._stopped.set()

    def is_running(self) -> bool:
        return self._running.is_set()

    def wait_cleared(self, timeout: float) -> bool:
        return self._stopped.wait(timeout=timeout)

    def view(self) -> RunFlagView:
        return RunFlagView(self)
