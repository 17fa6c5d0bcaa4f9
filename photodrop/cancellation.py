from __future__ import annotations


class Cancelled(Exception):
    """Raised by derivation and transfer when their CancelToken is cancelled."""


class CancelToken:
    """
    Cooperative cancellation flag. A child token is also cancelled when its parent is.
    """

    def __init__(self, parent: CancelToken | None = None) -> None:
        self._parent = parent
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> CancelToken:
        return CancelToken(parent=self)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled()
