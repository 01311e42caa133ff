"""
Error taxonomy

Services raise these; main.py turns them into the Fail envelope with the
status code carried by the class.
"""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    status_code = 422


class WeakPasswordError(ValidationError):
    def __init__(self, failures):
        self.failures = list(failures)
        super().__init__("Password is too weak: " + "; ".join(self.failures))


class ConflictError(MarketplaceError):
    status_code = 400


class NoChangeError(ConflictError):
    pass


class NotFoundError(MarketplaceError):
    status_code = 404


class UnauthorizedError(MarketplaceError):
    status_code = 401


class InvalidCredentialsError(UnauthorizedError):
    pass


class ForbiddenError(MarketplaceError):
    status_code = 403


class InsufficientStockError(MarketplaceError):
    status_code = 422

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Invalid product or insufficient stock for product_id: {product_id}")


class NotificationError(Exception):
    """Outbound email could not be delivered. Never mapped to an HTTP error."""
