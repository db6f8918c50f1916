"""Exceptions raised by the handshake and transfer paths."""


class TransferError(Exception):
    """Base class for every transfer failure."""


class TransferCancelled(TransferError):
    """The operation observed its cancellation signal."""


class PeerResponseError(TransferError):
    """The remote peer answered with a non-success status."""

    def __init__(self, status_code: int, reason: str) -> None:
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason


# --- Responder side ---

class RequestRejected(TransferError):
    """An inbound request that must be answered with ``status_code``."""
    status_code = 500


class MalformedRequest(RequestRejected):
    status_code = 400


class MissingParameters(RequestRejected):
    status_code = 400


class UnknownFile(RequestRejected):
    status_code = 400


class InvalidPath(RequestRejected):
    status_code = 400


class TransferRejected(RequestRejected):
    status_code = 403


class InvalidToken(RequestRejected):
    status_code = 403


class SessionBlocked(RequestRejected):
    status_code = 409


class ReceiveFailed(RequestRejected):
    status_code = 500
