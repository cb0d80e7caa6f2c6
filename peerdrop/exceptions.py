class PeerdropError(Exception):
    pass


class ValidationError(PeerdropError):
    """Raised when something does not pass a validation check."""


class EnvelopeError(ValidationError):
    """Raised when a signaling envelope cannot be decoded or is incomplete."""


class FrameError(ValidationError):
    """Raised when a transfer frame cannot be decoded."""


class RelayClientError(PeerdropError):
    """Base exception for signal relay client errors."""


class TransferError(PeerdropError):
    """Base exception for file transfer errors."""

    def __init__(self, message: str, transfer_id: str | None = None) -> None:
        super().__init__(message)
        self.transfer_id = transfer_id


class ChannelClosedError(TransferError):
    """The direct channel closed while a transfer was in flight."""

