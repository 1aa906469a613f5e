from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ForbiddenError(AppError):
    pass


class ValidationError(AppError):
    pass


class SubscriptionError(AppError):
    """A topic could not be opened on the change feed. Reported once, never retried here."""


class TransientDeliveryGap(AppError):
    """A gap or duplicate in feed delivery; absorbed by idempotent apply rules."""


class RefreshFailure(AppError):
    """The conversation list could not be recomputed; the previous list is kept."""
