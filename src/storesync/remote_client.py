"""HTTP client for the key-value backed Remote Store API."""

import logging
import time
from typing import Any, Callable
from urllib.parse import quote, unquote, urlencode

import requests

from .errors import (
    ConnectionFailedError,
    MalformedResponseError,
    RemoteOperationFailedError,
    RemoteStoreError,
    RequestRejectedError,
    RequestTimeoutError,
    ServerError,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15.0
RETRY_BACKOFF = 1.0
# Read-only calls get one more attempt; mutating calls never retry
MAX_RETRIES = 1

READ_METHODS = frozenset({"GET"})

# --- Endpoints ---

PRODUCTS = "/products"
PRODUCTS_CLEANUP = "/products/cleanup"
ORDERS = "/orders"
SETTINGS = "/settings"
USERS = "/users"


def products_endpoint(include_images: bool = False, offset: int = 0) -> str:
    query = {}
    if include_images:
        query["includeImages"] = "true"
    if offset:
        query["offset"] = offset
    return f"{PRODUCTS}?{urlencode(query)}" if query else PRODUCTS


def product_endpoint(product_id: str) -> str:
    return f"{PRODUCTS}/{quote(product_id, safe='')}"


def order_endpoint(order_id: str) -> str:
    return f"{ORDERS}/{quote(order_id, safe='')}"


def user_endpoint(email: str) -> str:
    return f"{USERS}/{quote(email, safe='')}"


def endpoint_id(endpoint: str, collection: str) -> str | None:
    """The record ID an endpoint addresses under ``collection``, if any."""
    prefix = f"{collection}/"
    if not endpoint.startswith(prefix):
        return None
    return unquote(endpoint[len(prefix):])


def ensure_success(payload: Any, endpoint: str) -> dict[str, Any]:
    """Return the payload if it reports success, else raise RemoteOperationFailedError."""
    if not isinstance(payload, dict):
        raise RemoteOperationFailedError(endpoint, "response is not an object")
    if payload.get("success") is not True:
        raise RemoteOperationFailedError(endpoint, payload.get("error"))
    return payload


class _Retryable(Exception):
    """Internal marker wrapping a failure that a read may retry."""

    def __init__(self, error: RemoteStoreError):
        self.error = error


class RemoteStoreClient:
    """
    Stateless client for the Remote Store.

    Every failure surfaces as a RemoteStoreError subclass; none are
    swallowed here.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        retry_backoff: float = RETRY_BACKOFF,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the Remote Store API.
            api_key: Bearer token sent with every call.
            timeout: Per-call timeout in seconds.
            retry_backoff: Fixed delay before the single read retry.
            session: Override the HTTP session (for testing).
            sleep: Override the backoff sleep (for testing).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_backoff = retry_backoff
        self.session = session or requests.Session()
        self._sleep = sleep
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def call(self, endpoint: str, method: str = "GET", body: Any = None) -> Any:
        """
        Issue one logical call and return the decoded JSON body.

        Reads (GET) are retried once after a fixed backoff on timeout, 5xx,
        or malformed JSON. Mutations are attempted exactly once.

        Raises:
            RequestTimeoutError, ConnectionFailedError, RequestRejectedError,
            ServerError, MalformedResponseError.
        """
        method = method.upper()
        retries = MAX_RETRIES if method in READ_METHODS else 0
        attempt = 0
        while True:
            try:
                return self._attempt(endpoint, method, body)
            except _Retryable as wrapped:
                if attempt >= retries:
                    raise wrapped.error from None
                attempt += 1
                logger.info(
                    "%s; retrying %s %s (attempt %d/%d)",
                    wrapped.error.message, method, endpoint, attempt, retries,
                )
                self._sleep(self.retry_backoff)

    def _attempt(self, endpoint: str, method: str, body: Any) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                headers=self._headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.error("Request timeout at %s", endpoint)
            raise _Retryable(RequestTimeoutError(endpoint, self.timeout)) from None
        except requests.ConnectionError as e:
            logger.error("Connection error at %s: %s", endpoint, e)
            raise ConnectionFailedError(endpoint, str(e)) from e

        status = response.status_code
        if 400 <= status < 500:
            detail = _error_detail(response)
            logger.error("API Error at %s: %s", endpoint, detail)
            raise RequestRejectedError(endpoint, status, detail)
        if status >= 500:
            detail = _error_detail(response)
            logger.error("API Error at %s: %s", endpoint, detail)
            raise _Retryable(ServerError(endpoint, status, detail))

        try:
            return response.json()
        except ValueError:
            logger.error("Failed to parse JSON response from %s", endpoint)
            raise _Retryable(MalformedResponseError(endpoint)) from None


def _error_detail(response: requests.Response) -> str:
    """Best human-readable error from an error response."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        detail = data.get("error") or data.get("message")
        if detail:
            return str(detail)
    return f"{response.status_code}: {response.reason}"
