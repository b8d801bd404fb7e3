"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "DOMAIN_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidRequestError(DomainException):
    """Request is missing or carries malformed fields"""

    code = "INVALID_REQUEST"


class InvalidSelectionError(DomainException):
    """Selected offer does not match the active offer session"""

    code = "INVALID_SELECTION"


class BorrowerNotFoundError(DomainException):
    """No borrower matches the lookup"""

    code = "USER_NOT_FOUND"
    http_status = 404


class LoanNotFoundError(DomainException):
    """No loan matches the lookup"""

    code = "LOAN_NOT_FOUND"
    http_status = 404


class TransactionNotFoundError(DomainException):
    """No repayment transaction matches the lookup"""

    code = "TRANSACTION_NOT_FOUND"
    http_status = 404


class NotEligibleError(DomainException):
    """Borrower has no credit available right now"""

    code = "NO_ELIGIBLE_AMOUNT"
    http_status = 422


class CreditLimitExceededError(DomainException):
    """Requested amount would push the borrower over their credit limit"""

    code = "CREDIT_LIMIT_EXCEEDED"
    http_status = 422

    def __init__(self, message: str, available_credit):
        super().__init__(message)
        self.available_credit = available_credit


class LoanCooldownError(DomainException):
    """Phone number already has a recent active loan"""

    code = "LOAN_COOLDOWN"
    http_status = 422


class LoanRequestInProgressError(DomainException):
    """Another request holds the issuance lock; caller may retry"""

    code = "REQUEST_IN_PROGRESS"
    http_status = 409
    retryable = True


class InvalidTransactionError(DomainException):
    """Transaction cannot be used for credit scoring"""

    code = "INVALID_TRANSACTION"


class InvalidLoanStateError(DomainException):
    """Requested loan status transition is not allowed"""

    code = "INVALID_LOAN_STATE"
    http_status = 409


class AppendOnlyViolationError(DomainException):
    """Attempt to update or delete an append-only ledger entry"""

    code = "APPEND_ONLY_VIOLATION"
    http_status = 500


class DisbursementProviderError(DomainException):
    """Telco disbursement API returned an error or is unavailable"""

    code = "DISBURSEMENT_PROVIDER_ERROR"
    http_status = 502
    retryable = True


class NotificationError(DomainException):
    """Notification sink rejected the event"""

    code = "NOTIFICATION_ERROR"
    http_status = 502
