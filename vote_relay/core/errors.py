from __future__ import annotations


class VoteRelayError(Exception):
    """Base vote relay error."""


class ConfigurationError(VoteRelayError):
    """Raised when a required setting is missing."""


class SchemaResolutionError(VoteRelayError):
    """Raised when no column of a database schema can serve a role."""


class InvalidKeyError(VoteRelayError):
    """Raised when an invitation key does not match any key record."""


class KeyAlreadyUsedError(VoteRelayError):
    """Raised when an invitation key has already been redeemed."""


class NonNumericVoteColumnError(VoteRelayError):
    """Raised when a target record's vote column is missing or not a number."""


class StorageError(VoteRelayError):
    """Raised when a job record cannot be written to durable storage."""


class RetryExhaustedError(VoteRelayError):
    """Raised when a retryable failure persists through every attempt."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class QueueClosedError(VoteRelayError):
    """Raised when a submission arrives after the job queue stopped accepting work."""
