from __future__ import annotations


class OtpAuthError(ValueError):
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None, *, field: str | None = None):
        super().__init__(message or self.default_message)
        self.field = field


class OtpValidationError(OtpAuthError):
    default_message = "Invalid input."


class OtpFlowError(OtpAuthError):
    """Expected outcomes of the code flow; the customer can act on them."""


class OtpNotFoundError(OtpFlowError):
    default_message = "קוד לא נמצא. אנא בקש קוד חדש."


class OtpExpiredError(OtpFlowError):
    default_message = "הקוד פג תוקף. אנא בקש קוד חדש."


class OtpAttemptsExceededError(OtpFlowError):
    default_message = "יותר מדי נסיונות. אנא בקש קוד חדש."


class OtpMismatchError(OtpFlowError):
    default_message = "קוד שגוי. נסה שוב."


class OtpCooldownError(OtpFlowError):
    default_message = "A code was sent recently. Please wait before requesting another."

    def __init__(self, message: str | None = None, *, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 0)


class OtpServiceError(OtpAuthError):
    """Failures of the service or its collaborators, not of the customer's input."""


class OtpConfigError(OtpServiceError):
    default_message = "SMS service not configured"


class OtpDeliveryError(OtpServiceError):
    default_message = "Failed to send SMS"

    def __init__(self, message: str | None = None, *, details: object = None):
        super().__init__(message)
        self.details = details


class OtpPersistenceError(OtpServiceError):
    default_message = "Failed to generate OTP"


class OtpConflictError(OtpPersistenceError):
    default_message = "An active code already exists for this phone."


class IdentityError(OtpServiceError):
    default_message = "Failed to authenticate user"


class AccountExistsError(OtpAuthError):
    default_message = "An account with this email already exists."
