"""
ZK Error Taxonomy
=================

Exceptions raised by relations, ceremonies, backends and the proof manager.

Expected failures (bad witness input, missing setup, proving faults,
timeouts) are converted into ``ProofResult(success=False)`` at the proof
manager boundary. An invalid proof is not an error at all: verification
simply returns ``False``. A malformed proof object raises
``VerificationFault``.

Version: 0.1.0
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error categories."""

    VALIDATION = "validation"
    SETUP_NOT_READY = "setup_not_ready"
    PROVING = "proving"
    TIMEOUT = "timeout"
    VERIFICATION_FAULT = "verification_fault"
    CEREMONY_STATE = "ceremony_state"


class ZKError(Exception):
    """Base exception for proof system operations."""

    code: ErrorCode = ErrorCode.PROVING

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ZKError):
    """Malformed or out-of-range witness input, detected before proving."""

    code = ErrorCode.VALIDATION


class UnknownRelationError(ValidationError):
    """The requested relation is not defined."""


class SetupNotReadyError(ZKError):
    """No completed ceremony has published key material for the relation."""

    code = ErrorCode.SETUP_NOT_READY


class ProvingError(ZKError):
    """The backend failed to turn a well-formed witness into a proof."""

    code = ErrorCode.PROVING


class ProofTimeoutError(ZKError):
    """Proof generation exceeded the configured timeout."""

    code = ErrorCode.TIMEOUT


class VerificationFault(ZKError):
    """The proof object or public inputs are malformed, or the verifier crashed."""

    code = ErrorCode.VERIFICATION_FAULT


class CeremonyStateError(ZKError):
    """Operation attempted against a ceremony in the wrong state."""

    code = ErrorCode.CEREMONY_STATE


class CeremonyNotFoundError(CeremonyStateError):
    """No ceremony exists with the given id."""
