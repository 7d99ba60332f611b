"""Custom exceptions for storesync."""


class StoresyncError(Exception):
    """Base exception for all storesync errors."""

    pass


# --- Remote Store failures ---


class RemoteStoreError(StoresyncError):
    """Base for every failure reported by the Remote Store client."""

    def __init__(self, endpoint: str, message: str):
        self.endpoint = endpoint
        self.message = message
        super().__init__(f"{message} ({endpoint})")


class RequestTimeoutError(RemoteStoreError):
    """Raised when a remote call exceeds the client timeout."""

    def __init__(self, endpoint: str, timeout: float):
        self.timeout = timeout
        super().__init__(endpoint, f"Request timed out after {timeout:g}s")


class ConnectionFailedError(RemoteStoreError):
    """Raised on transport-level failures (DNS, refused, reset)."""

    def __init__(self, endpoint: str, reason: str | None = None):
        self.reason = reason
        msg = "Connection failed"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(endpoint, msg)


class RequestRejectedError(RemoteStoreError):
    """Raised on 4xx responses. Never retried."""

    def __init__(self, endpoint: str, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(endpoint, f"Request rejected with {status_code}: {detail}")


class ServerError(RemoteStoreError):
    """Raised on 5xx responses."""

    def __init__(self, endpoint: str, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(endpoint, f"Server error {status_code}: {detail}")


class MalformedResponseError(RemoteStoreError):
    """Raised when a response body is not valid JSON."""

    def __init__(self, endpoint: str):
        super().__init__(endpoint, "Invalid response from server (malformed JSON)")


class RemoteOperationFailedError(RemoteStoreError):
    """Raised when the server answers but reports success=false."""

    def __init__(self, endpoint: str, detail: str | None = None):
        self.detail = detail
        msg = "Remote store reported failure"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(endpoint, msg)


# --- Domain failures ---


class AccountExistsError(StoresyncError):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(
            f"An account with email {email} already exists. Please login instead."
        )


class CredentialsRejectedError(StoresyncError):
    """Raised when the credential verifier refuses a login."""

    def __init__(self, email: str, reason: str | None = None):
        self.email = email
        msg = f"Login refused for {email}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class NotAuthenticatedError(StoresyncError):
    """Raised when an account operation runs with nobody signed in."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cannot {operation}: no user is signed in")


class CacheUnavailableError(StoresyncError):
    """Raised when the local cache cannot be read or written (e.g. over quota)."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Local cache unavailable for '{key}': {reason}")


class InvalidRecordError(StoresyncError):
    """Raised when a record fails validation or has an unknown shape."""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid {kind}: {reason}")


class ProductNotFoundError(StoresyncError):
    """Raised when a product ID doesn't exist."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(StoresyncError):
    """Raised when an order ID doesn't exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class StoreUnavailableError(StoresyncError):
    """Raised when the server-side key-value store cannot be read or written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Key-value store at {path} unavailable: {reason}")
