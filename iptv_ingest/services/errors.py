"""
Failure signals raised by the ingestion pipeline.
"""


class IngestError(RuntimeError):
    """Raised when a whole fetch or decode fails for one source."""


class XtreamError(IngestError):
    """Raised when an Xtream Codes API call fails (URL, HTTP or JSON)."""


class ProbeError(IngestError):
    """Raised by a probe attempt that reached the server but was rejected."""


class IngestCancelled(IngestError):
    """Raised inside a parse loop once its cancel flag has been set."""


class CancelFlag:
    """Cooperative cancellation checked by long-running parse loops."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self):
        if self._cancelled:
            raise IngestCancelled("Ingestion cancelled")
