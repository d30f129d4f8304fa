"""
Async HTTP client for calling JSON APIs (our own /api or external services)

- JSON bodies in and out
- Structured ApiException with an error code per failure kind
- Per-request timeout and retries with linear backoff
- Request/response/error hooks
"""

import asyncio
import enum
import json
import logging
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_DELAY_SECONDS = 1.0

DEFAULT_ERROR_MESSAGES = {
    400: "Bad request",
    401: "Unauthorized - please sign in",
    403: "Forbidden - you don't have permission",
    404: "Not found",
    422: "Validation error",
    429: "Too many requests - please try again later",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Gateway timeout",
}


class ApiErrorCode(str, enum.Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN"


def error_code_for_status(status: int) -> ApiErrorCode:
    if status == 401:
        return ApiErrorCode.UNAUTHORIZED
    if status == 403:
        return ApiErrorCode.FORBIDDEN
    if status == 404:
        return ApiErrorCode.NOT_FOUND
    if status == 422:
        return ApiErrorCode.VALIDATION_ERROR
    if status == 429:
        return ApiErrorCode.RATE_LIMITED
    if status >= 500:
        return ApiErrorCode.SERVER_ERROR
    return ApiErrorCode.UNKNOWN


def error_message_for(status: int, body: Any = None) -> str:
    """Body's "message" field when present, else a default for the status."""
    if isinstance(body, dict) and "message" in body:
        return str(body["message"])
    return DEFAULT_ERROR_MESSAGES.get(status, f"Request failed with status {status}")


class ApiException(Exception):
    """Raised for every failed API call."""

    def __init__(self, code: ApiErrorCode, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.details = details

    @classmethod
    def from_response(cls, response: httpx.Response, body: Any = None) -> "ApiException":
        return cls(
            code=error_code_for_status(response.status_code),
            message=error_message_for(response.status_code, body),
            status=response.status_code,
            details=body,
        )

    @classmethod
    def network_error(cls, error: Exception) -> "ApiException":
        return cls(code=ApiErrorCode.NETWORK_ERROR, message=f"Network error: {error}", details=error)

    @classmethod
    def timeout(cls) -> "ApiException":
        return cls(code=ApiErrorCode.TIMEOUT, message="Request timed out")

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500

    def __repr__(self):
        return f"ApiException(code={self.code.value}, status={self.status}, message={self.message!r})"


def parse_response_body(response: httpx.Response) -> Any:
    """JSON when the response is (or looks like) JSON, raw text otherwise."""
    if not response.content:
        return None
    # Proxies answer with HTML error pages under a JSON content type
    text = response.text
    try:
        return json.loads(text)
    except ValueError:
        return text


class ApiClient:
    """
    Async JSON API client built on httpx.

    Args:
        base_url: Prefix for relative endpoints (absolute URLs pass through)
        default_headers: Sent with every request
        default_timeout: Seconds before a request fails with TIMEOUT
        on_request: hook(url, config) -> config, called before each request
        on_response: hook(data) -> data, called on each successful response
        on_error: hook(ApiException), called once when a request finally fails
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests)

    Example:
        api = ApiClient("https://api.example.com", default_headers={"Authorization": f"Bearer {key}"})
        users = await api.get("/users")
    """

    def __init__(
        self,
        base_url: str,
        default_headers: Optional[Dict[str, str]] = None,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        on_request: Optional[Callable[[str, dict], dict]] = None,
        on_response: Optional[Callable[[Any], Any]] = None,
        on_error: Optional[Callable[[ApiException], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = default_headers or {}
        self.default_timeout = default_timeout
        self.on_request = on_request
        self.on_response = on_response
        self.on_error = on_error
        self._transport = transport

    def build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}{endpoint}"

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        retries: int = 0,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> Any:
        """
        Send a request and return the parsed body.

        4xx responses are never retried. Other failures are retried up to
        `retries` times, waiting retry_delay * (attempt + 1) between attempts.

        Raises:
            ApiException: on a non-2xx response, timeout or transport error
        """
        url = self.build_url(endpoint)
        config = {
            "method": method.upper(),
            "headers": {"Content-Type": "application/json", **self.default_headers, **(headers or {})},
            "params": params,
            "body": body,
            "timeout": timeout if timeout is not None else self.default_timeout,
        }
        if self.on_request:
            config = self.on_request(url, config)

        content = json.dumps(config["body"]) if config.get("body") is not None else None
        last_error: Optional[ApiException] = None

        for attempt in range(retries + 1):
            try:
                async with httpx.AsyncClient(transport=self._transport, timeout=config["timeout"]) as client:
                    response = await client.request(
                        config["method"],
                        url,
                        content=content,
                        headers=config["headers"],
                        params=config.get("params"),
                    )

                if not response.is_success:
                    raise ApiException.from_response(response, parse_response_body(response))

                data = parse_response_body(response)
                if self.on_response:
                    data = self.on_response(data)
                return data

            except ApiException as e:
                last_error = e
                if e.is_client_error:
                    break
            except httpx.TimeoutException:
                last_error = ApiException.timeout()
            except httpx.RequestError as e:
                last_error = ApiException.network_error(e)

            if attempt < retries:
                delay = retry_delay * (attempt + 1)
                logger.warning(f"{config['method']} {url} failed ({last_error.code.value}), retrying in {delay}s")
                await asyncio.sleep(delay)

        if self.on_error and last_error is not None:
            self.on_error(last_error)
        raise last_error

    async def get(self, endpoint: str, **kwargs) -> Any:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs) -> Any:
        return await self.request("POST", endpoint, body=body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs) -> Any:
        return await self.request("PUT", endpoint, body=body, **kwargs)

    async def patch(self, endpoint: str, body: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", endpoint, body=body, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> Any:
        return await self.request("DELETE", endpoint, **kwargs)
