"""
Error taxonomy for record access and classification of driver faults.

Record operations surface three domain errors. Any other driver fault
propagates unchanged, so callers see connection refusals and timeouts
as the driver reports them.
"""

from typing import Optional, Type

from pymongo.errors import DuplicateKeyError, OperationFailure


class RecordProviderError(Exception):
    """Base exception for record provider errors."""

    status_code = 500


class ArgumentError(RecordProviderError, ValueError):
    """Raised when a provider is constructed or called with invalid input."""

    status_code = 400


class NotFoundError(RecordProviderError, LookupError):
    """Raised when a requested record does not exist."""

    status_code = 404


class ValidationError(RecordProviderError):
    """Raised when a write conflicts with an existing record."""

    status_code = 400


class FaultClassifier:
    """
    Maps raw driver faults to domain error types.

    The default implementation classifies nothing, leaving every fault to
    propagate as raised. Subclass per underlying store.
    """

    def classify(self, error: BaseException) -> Optional[Type[RecordProviderError]]:
        """
        Classify a driver fault raised by a write.

        Args:
            error: Exception raised by the driver

        Returns:
            Domain error class to raise instead, or None to re-raise the fault
        """
        return None


class MongoFaultClassifier(FaultClassifier):
    """Fault classifier for MongoDB drivers."""

    # 11000/11001: duplicate key, 12582: duplicate key on a mongos
    DUPLICATE_KEY_CODES = frozenset({11000, 11001, 12582})

    def classify(self, error: BaseException) -> Optional[Type[RecordProviderError]]:
        if isinstance(error, DuplicateKeyError):
            return ValidationError
        if isinstance(error, OperationFailure) and error.code in self.DUPLICATE_KEY_CODES:
            return ValidationError
        return None
