"""
Messaging error taxonomy
Raised by the store, the attachment pipeline and the client SDK; the API
layer maps them onto HTTP responses.
"""


class MessagingError(Exception):
    """Base class for messaging errors"""
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(MessagingError):
    """Oversize or forbidden attachment, missing field, self-message"""
    status_code = 400


class PermissionDenied(MessagingError):
    """Caller is not allowed to perform the action"""
    status_code = 403


class NotFound(MessagingError):
    """Receiver, message or reply target does not exist"""
    status_code = 404


class TransportError(MessagingError):
    """Network or push channel failure"""
    status_code = 503
