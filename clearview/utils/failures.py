"""
Structured error handling and failure tracking for the Clearview pipeline.
"""
import threading
import time
from typing import Dict, List, Optional

from clearview.utils.logger import Logger


class ClearviewError(Exception):
    """Base class for all Clearview exceptions."""
    def __init__(self, message: str, critical: bool = False):
        super().__init__(message)
        self.message = message
        self.critical = critical
        self.timestamp = time.time()


class ConfigError(ClearviewError):
    """Raised for unreadable or invalid configuration (class/color lists, policies)."""
    pass


class SourceUnavailableError(ClearviewError):
    """Raised when the video source cannot be opened or yields no frames."""
    pass


class ModelLoadError(ClearviewError):
    """Raised when the detector network cannot be loaded."""
    pass


class DehazeError(ClearviewError):
    """Raised for frames the dehaze transform cannot handle."""
    pass


class BusFrozenError(ClearviewError):
    """Raised when a handler is registered after the dispatch loop started."""
    pass


class FailureManager:
    """Tracks recurring failures in a sliding time window."""

    def __init__(self, settings: Optional[dict] = None):
        """
        Args:
            settings: Dictionary with 'threshold' and 'window_seconds'.
        """
        self.logger = Logger("FailureManager")

        self.settings = settings or {}
        self.threshold = self.settings.get('threshold', 5)
        self.window_seconds = self.settings.get('window_seconds', 300)

        self.failures: Dict[str, List[float]] = {}
        self.history: List[Exception] = []
        self._max_history = 100
        self._lock = threading.Lock()

    def record_failure(self, error: Exception):
        """Record a failure incident (thread-safe)."""
        with self._lock:
            error_type = type(error).__name__
            now = time.time()

            timestamps = self.failures.setdefault(error_type, [])
            timestamps.append(now)

            cutoff = now - self.window_seconds
            self.failures[error_type] = [t for t in timestamps if t > cutoff]

            self.history.append(error)
            if isinstance(error, ClearviewError):
                msg = f"Failure detected: {error_type} - {error.message}"
                if error.critical:
                    self.logger.error(f"CRITICAL: {msg}")
                else:
                    self.logger.warning(msg)
            else:
                self.logger.error(f"Unexpected failure: {error_type} - {error}")

            if len(self.history) > self._max_history:
                self.history = self.history[-self._max_history:]

            if len(self.failures[error_type]) >= self.threshold:
                self.logger.warning(
                    f"Resilience Alert: '{error_type}' exceeded threshold "
                    f"({self.threshold} in {self.window_seconds}s)"
                )

    def is_threshold_exceeded(self, error_type: str) -> bool:
        """Check if a specific error type has exceeded the frequency threshold."""
        with self._lock:
            now = time.time()
            recent = [t for t in self.failures.get(error_type, []) if (now - t) < self.window_seconds]
            self.failures[error_type] = recent
            return len(recent) >= self.threshold

    def count(self, error_type: str) -> int:
        with self._lock:
            return len(self.failures.get(error_type, []))

    def get_recent_history(self, count: int = 10) -> List[Exception]:
        """Return the most recent failures."""
        with self._lock:
            return self.history[-count:]

    def clear(self):
        """Reset all tracked failures."""
        with self._lock:
            self.failures = {}
            self.history = []
        self.logger.info("Failure history cleared.")
