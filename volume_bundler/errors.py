"""
Exception taxonomy for bundle construction and submission.

Messages carry wallet / market prefixes and attempt counts, never key material.
"""
from typing import Optional


class BundlerError(Exception):
    """Base class for all volume bundler errors."""


class VenueResolutionError(BundlerError):
    """Market id could not be classified as any supported venue kind."""


class TokenProgramResolutionError(BundlerError):
    """Mint account is missing or owned by an unknown program."""


class InstructionBuildError(BundlerError):
    """Instruction or envelope could not be built (missing field, oversize, ...)."""


class BalanceInsufficientError(BundlerError):
    """Main wallet cannot cover the estimated cost of the run."""

    def __init__(self, required_lamports: int, available_lamports: int):
        self.required_lamports = required_lamports
        self.available_lamports = available_lamports
        super().__init__(
            f"Insufficient balance: required {required_lamports} lamports, "
            f"available {available_lamports} lamports"
        )


class RetryExhaustedError(BundlerError):
    """Operation kept failing after the configured number of attempts."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


class BundleSubmissionError(BundlerError):
    """Relay rejected the bundle or could not be reached."""


class BundleResultError(BundlerError):
    """Bundle was accepted by the relay but did not land."""

    def __init__(self, bundle_id: str, reason: str, status: str = "failed"):
        self.bundle_id = bundle_id
        self.reason = reason
        self.status = status  # "failed" or "unknown"
        super().__init__(f"Bundle {bundle_id[:8]} {status}: {reason}")


class OperationCancelledError(BundlerError):
    """Cancellation signal was set while waiting."""
