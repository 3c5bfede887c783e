"""
Billing Error Taxonomy

Every failure raised by the subscription engine derives from BillingError:

- ValidationError: client-detected precondition violation (missing proof,
  illegal transition). Never reaches the network.
- TransientError: network failure or timeout. Safe to retry by invoking
  the same operation again.
- ServerRejection: the backend answered and refused. Carries the server's
  human-readable reason verbatim.
- IntegrityError: the backend answered with a payload we cannot trust.
- ProcessingError: a proof-of-payment image could not be read or encoded.
"""

from typing import Optional


class BillingError(Exception):
    """Base class for subscription engine errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BillingError):
    """Raised when a request is refused before any network call"""
    pass


class TransientError(BillingError):
    """Raised on network failures and timeouts"""

    retryable = True


class ServerRejection(BillingError):
    """Raised when the backend refuses an operation"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class IntegrityError(BillingError):
    """Raised when a server payload is malformed"""
    pass


class ProcessingError(BillingError):
    """Raised when a proof-of-payment image cannot be read or encoded"""
    pass
