import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 5.0


class HealthDaemon:
    """
    Auto-resetting periodic timer on a background thread.
    Started on connect, disabled on explicit disconnect, reusable after
    stop(). A tick never raises out of the timer thread: failures go to
    `on_error` and the log.
    """

    def __init__(self, tick: Callable[[], None], interval_s: float = DEFAULT_INTERVAL_S,
                 on_error: Optional[Callable[[Exception], None]] = None, name: str = "HealthDaemon"):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._tick = tick
        self._interval = interval_s
        self._on_error = on_error
        self._name = name
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._closed = False

    @property
    def interval_s(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        with self._lock:
            return self._is_running()

    def start(self) -> bool:
        """Enable the timer. No-op if it is already running."""
        with self._lock:
            if self._closed:
                logger.debug(f"{self._name} is closed, not starting")
                return False
            if self._is_running():
                return True
            stop_event = threading.Event()
            thread = threading.Thread(target=self._run, args=(stop_event,), name=self._name, daemon=True)
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        logger.info(f"{self._name} started (interval={self._interval}s)")
        return True

    def stop(self):
        """Disable the timer. Does not wait for a tick in progress."""
        with self._lock:
            if not self._is_running():
                return
            self._stop_event.set()
            self._thread = None
            self._stop_event = None
        logger.info(f"{self._name} stopped")

    def close(self, timeout: float = 2.0):
        """Stop permanently and wait for the timer thread to exit."""
        with self._lock:
            self._closed = True
            thread = self._thread
            if self._stop_event is not None:
                self._stop_event.set()
            self._thread = None
            self._stop_event = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _is_running(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and not self._stop_event.is_set()
        )

    def _run(self, stop_event: threading.Event):
        while not stop_event.wait(self._interval):
            try:
                self._tick()
            except Exception as e:
                logger.exception(f"{self._name} tick failed")
                if self._on_error is not None:
                    try:
                        self._on_error(e)
                    except Exception:
                        logger.exception(f"{self._name} error handler failed")
