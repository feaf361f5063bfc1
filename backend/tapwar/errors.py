class StoreError(Exception):
    """A call to the realtime store failed (transport error or non-2xx reply)."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class JoinError(Exception):
    """Joining the roster failed; safe to retry."""
