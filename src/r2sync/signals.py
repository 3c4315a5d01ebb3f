# src/r2sync/signals.py
"""
Signal handling for an orderly stop.

SIGINT and SIGTERM are translated into an `asyncio.Event`. The scheduler
stops admitting new transfers once it is set and lets in-flight transfers
finish, so no destination file is cut off mid-stream. A second signal exits
immediately.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Tuple, Union

logger: logging.Logger = logging.getLogger(__name__)

_PreviousHandler = Union[Callable[[int, Optional[FrameType]], Any], int, None]

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """
    Async context manager yielding an event set on the first stop signal.

    Previous handlers are restored on exit.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self._previous: Dict[signal.Signals, _PreviousHandler] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def event(self) -> asyncio.Event:
        return self._event

    def _on_signal(self, signum: int, _: Optional[FrameType]) -> None:
        if self._event.is_set():
            logger.critical("Received a second stop signal. Exiting immediately.")
            os._exit(130)
        logger.warning(
            f"Received {signal.Signals(signum).name}. Finishing in-flight "
            "transfers; no new transfers will start. Signal again to abort."
        )
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self._event.set)

    async def __aenter__(self) -> asyncio.Event:
        self._loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                self._previous[sig] = signal.signal(sig, self._on_signal)
            except (ValueError, OSError) as e:
                # Only the main thread may install handlers.
                logger.debug(f"Could not install handler for {sig.name}: {e}")
        return self._event

    async def __aexit__(self, *exc_info: Any) -> None:
        while self._previous:
            sig, previous = self._previous.popitem()
            try:
                signal.signal(sig, signal.SIG_DFL if previous is None else previous)
            except (ValueError, OSError) as e:
                logger.debug(f"Could not restore handler for {sig.name}: {e}")
