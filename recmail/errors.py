"""Exceptions raised across the campaign pipeline."""

from __future__ import annotations


class RecmailError(Exception):
    """Base exception for campaign pipeline errors."""

    pass


class NoRecipientsError(RecmailError):
    """Raised when the recipient source yields nobody to email."""

    pass


class NoCandidateModelError(RecmailError):
    """Raised when no evaluation record carries a usable metric."""

    pass


class TemplateIdRequired(RecmailError):
    """Raised when a message is requested without an email template id."""

    pass


class DataSourceUnavailable(RecmailError):
    """Raised when a tabular source or stored blob cannot be read."""

    pass


class MalformedRecord(RecmailError):
    """Raised when a row or stored record does not have the expected shape."""

    pass


class EmailProviderRejected(RecmailError):
    """Raised when the email provider does not accept a batch."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Email provider rejected batch with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class ConfigurationError(RecmailError, ValueError):
    """Raised when the campaign configuration cannot be built from the environment."""

    pass
