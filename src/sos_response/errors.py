from __future__ import annotations


class SOSError(Exception):
    """Base error carrying a stable category string for clients."""

    category = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {"category": self.category, "message": self.message}


class NotFound(SOSError):
    category = "not_found"


class InvalidTransition(SOSError):
    category = "invalid_transition"


class InvalidInput(SOSError):
    category = "invalid_input"


class NoContactsConfigured(SOSError):
    category = "no_contacts_configured"


class SendFailure(SOSError):
    """Raised by a message sender; always captured as a failed record."""

    category = "send_failure"
