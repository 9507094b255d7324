"""
Error taxonomy for webhook processing.

AuthenticationError and ValidationError abort a request before any write.
NotFoundError and TransientStoreError are raised inside individual
processing steps, logged, and never stop sibling steps.
"""


class StorefrontError(Exception):
    """Base class for errors raised by the billing core."""


class AuthenticationError(StorefrontError):
    """Missing or invalid webhook signature."""


class ValidationError(StorefrontError):
    """Malformed event payload or missing required fields."""


class NotFoundError(StorefrontError):
    """No account matches a customer id, referral code or email."""


class TransientStoreError(StorefrontError):
    """A write to an account or ledger table failed; safe to retry."""
