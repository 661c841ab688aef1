"""
Exceptions raised by vested_uploader.

Only StartupConfigurationError is fatal to a run. RowSubmissionError and the
decode errors are caught per row by the submission controller.
"""


class VestedUploaderError(Exception):
    """Base class for every error raised by this package."""


class StartupConfigurationError(VestedUploaderError):
    """Endpoint, contract address, ABI path, signer seed or input file is missing or invalid."""


class RowSubmissionError(VestedUploaderError):
    """Building, signing, broadcasting or confirming a single row failed."""

    def __init__(self, message, row=None):
        super().__init__(message)
        self.row = row


class EventDecodeError(VestedUploaderError):
    """A ContractEmitted payload could not be mapped to an outcome label."""


class InvalidEventFormat(EventDecodeError):
    """Event data is absent or has fewer than two elements."""


class InvalidEventPayload(EventDecodeError):
    """Payload bytes do not carry a known outcome discriminant and index."""
