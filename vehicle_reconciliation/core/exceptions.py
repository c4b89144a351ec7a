"""
Exception classes for the reconciliation pipeline.

Input problems and transport failures are fatal; data-quality problems are
never raised (rows are dropped and logged instead).
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """
    Base exception class for all reconciliation errors

    Attributes:
        message: Error message
        phase: Pipeline phase where the error occurred
        details: Additional error details
        original_exception: Original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
    ):
        self.message = message
        self.phase = phase
        self.details = details or {}
        self.original_exception = original_exception

        full_message = message
        if phase:
            full_message = f"[{phase.upper()}] {message}"

        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "phase": self.phase,
            "details": self.details,
            "original_exception": str(self.original_exception)
            if self.original_exception
            else None,
        }


class InputError(ReconciliationError):
    """
    Raised for unusable command line input.

    Common causes:
    - Missing CSV arguments
    - Conflicting mode or resume flags
    - Files that do not exist or cannot be read
    """


class DecoderTransportError(ReconciliationError):
    """
    Raised when the VIN decoding service gives no usable response.

    Aborts the external decoding phase. Batches committed before the failure
    stay in the unmatched store, so a resumed run only sends what is left.
    """

    def __init__(
        self,
        message: str,
        batch_number: Optional[int] = None,
        original_exception: Optional[Exception] = None,
    ):
        self.batch_number = batch_number
        super().__init__(
            message,
            phase="external_decode",
            details={"batch_number": batch_number},
            original_exception=original_exception,
        )
