class ReplyChainError(Exception):
    """Base error for the bot."""


class DuplicateMessageError(ReplyChainError):
    """A message id was stored twice; the transport broke id uniqueness."""

    def __init__(self, message_id: int):
        super().__init__(f"Message already stored: {message_id}")
        self.message_id = message_id


class SessionNotFoundError(ReplyChainError):
    """No live session ends at the given message id."""

    def __init__(self, end_id: int):
        super().__init__(f"No session ends at message {end_id}")
        self.end_id = end_id


class BackendError(ReplyChainError):
    """A backend call failed on every attempt."""

    def __init__(self, backend: str, attempts: int, last_error: BaseException | None):
        super().__init__(f"{backend} failed after {attempts} attempt(s): {last_error}")
        self.backend = backend
        self.attempts = attempts
        self.last_error = last_error


class DeliveryError(ReplyChainError):
    """Outbound message could not be delivered, even as plain text."""


class TelegramApiError(ReplyChainError):
    def __init__(self, method: str, error_code: int | None, description: str):
        super().__init__(f"Telegram {method} failed ({error_code}): {description}")
        self.method = method
        self.error_code = error_code
        self.description = description
