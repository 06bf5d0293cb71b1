from __future__ import annotations

from deepest.errors import ResearchCancelled


class CancellationToken:
    """Cooperative cancellation flag for one research run.

    Only ``cancel`` writes the flag. Pipeline code polls it at phase and loop
    boundaries and before every outbound call, never inside one.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ResearchCancelled()
