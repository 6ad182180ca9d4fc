# ABOUTME: Custom exception hierarchy for mailhub error handling
# ABOUTME: Provides specialized exceptions with recovery hints for each module
"""Custom exceptions for mailhub"""


class MailhubError(Exception):
    """Base exception for all mailhub errors"""

    def __init__(self, message: str, recovery_hint: str | None = None):
        super().__init__(message)
        self.recovery_hint = recovery_hint

    def __str__(self):
        base = super().__str__()
        if self.recovery_hint:
            return f"{base}\nHint: {self.recovery_hint}"
        return base


class ConfigError(MailhubError):
    """Configuration related errors"""

    pass


class DataError(MailhubError):
    """Data storage/retrieval errors"""

    pass


class EmailParsingError(MailhubError):
    """Email parsing errors"""

    pass


class ValidationError(MailhubError):
    """Validation errors"""

    pass


class MissingIdentifierError(ValidationError):
    """A message reached thread resolution without a Message-ID"""

    pass
