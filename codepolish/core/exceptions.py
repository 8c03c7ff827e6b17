class CodePolishError(Exception):
    """Base exception for CodePolish.

    Every subclass carries a stable ``code`` and the HTTP status it maps to.
    """

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthorizedError(CodePolishError):
    """Raised when a protected procedure is called without a valid session."""

    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Please login"


class ForbiddenError(CodePolishError):
    """Raised when the caller does not own the resource or lacks the plan for it."""

    code = "FORBIDDEN"
    status_code = 403
    default_message = "Access denied"


class NotFoundError(CodePolishError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class BadRequestError(CodePolishError):
    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Bad request"


class InvalidAmountError(BadRequestError):
    """Raised when a credit operation is given a non-positive amount."""

    def __init__(self, amount: int):
        self.amount = amount
        super().__init__(f"Credit amount must be positive, got {amount}")


class InsufficientCreditsError(CodePolishError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402
    default_message = "Insufficient credits. Please upgrade your plan."


class SubscriptionNotFoundError(CodePolishError):
    code = "SUBSCRIPTION_NOT_FOUND"
    status_code = 404
    default_message = "Subscription not found"


class TooManyRequestsError(CodePolishError):
    code = "TOO_MANY_REQUESTS"
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, retry_after: int = 1):
        self.retry_after = retry_after
        base = message or self.default_message
        super().__init__(f"{base} Retry after {retry_after} seconds.")


class InternalError(CodePolishError):
    pass


class PolishEngineError(InternalError):
    """Raised when the analysis/transformation step returns an unusable result."""

    default_message = "Polish engine failed"
