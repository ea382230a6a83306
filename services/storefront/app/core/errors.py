"""Error taxonomy shared by the order, customer and payment modules.

Routers map these onto HTTP status codes; webhook handlers swallow all of
them except ``PersistenceError`` so providers only redeliver when the
database could not be reached.
"""


class StorefrontError(Exception):
    """Base class for every error raised by the storefront core."""

    status_code = 500

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(StorefrontError):
    """Bad input shape or values; the user can correct it."""

    status_code = 422


class ProductUnavailable(ValidationError):
    """A referenced product is missing or not orderable."""

    status_code = 409

    def __init__(self, product_id, reason: str = "unavailable"):
        super().__init__(f"Product {product_id} is {reason}", product_id=product_id)
        self.product_id = product_id
        self.reason = reason


class CustomerResolutionError(StorefrontError):
    status_code = 422


class PersistenceError(StorefrontError):
    """Storage unreachable or a constraint was violated."""

    status_code = 503


# The customer resolver contract names its storage failure StoreError.
StoreError = PersistenceError


class ProviderCommunicationError(StorefrontError):
    """Timeout, transport error or non-2xx answer from a payment provider API."""

    status_code = 502

    def __init__(self, provider: str, message: str, status: int | None = None):
        super().__init__(message, provider=provider, status=status)
        self.provider = provider
        self.status = status


class ReconciliationConflict(StorefrontError):
    """A status transition was rejected by the order state machine."""

    status_code = 409

    def __init__(self, current_status: str, attempted_status: str):
        super().__init__(
            f"Cannot transition order from {current_status} to {attempted_status}",
            current_status=current_status,
            attempted_status=attempted_status,
        )
        self.current_status = current_status
        self.attempted_status = attempted_status


class WebhookSignatureError(StorefrontError):
    status_code = 401
