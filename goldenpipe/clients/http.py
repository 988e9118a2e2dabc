from typing import Any

import httpx

from goldenpipe.errors import ExternalUnavailable


class RequestFailure(RuntimeError):
    def __init__(
        self,
        *,
        method: str,
        url: str,
        error_type: str,
        detail: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ):
        self.method = method
        self.url = url
        self.error_type = error_type
        self.detail = detail
        self.status_code = status_code
        self.response_text = response_text
        super().__init__(f"request failed: {method} {url} ({error_type}: {detail})")


class ResourceNotFound(RequestFailure):
    pass


class ResourceConflict(RequestFailure):
    pass


def _failure_for_status(status_code: int) -> type[RequestFailure]:
    if status_code == 404:
        return ResourceNotFound
    if status_code == 409:
        return ResourceConflict
    return RequestFailure


def send_request(
    client: httpx.Client, method: str, url: str, **kwargs: Any
) -> httpx.Response:
    """Issue a single request. Nothing is retried here; callers own retry policy."""
    try:
        response = client.request(method, url, **kwargs)
        response.raise_for_status()
        return response
    except httpx.HTTPStatusError as exc:
        status_code = exc.response.status_code
        body = (exc.response.text or "").strip()
        detail = f"HTTP {status_code}: {body[:240]}" if body else f"HTTP {status_code}"
        failure_cls = _failure_for_status(status_code)
        raise failure_cls(
            method=method,
            url=url,
            error_type=exc.__class__.__name__,
            detail=detail,
            status_code=status_code,
            response_text=exc.response.text,
        ) from exc
    except httpx.RequestError as exc:
        raise ExternalUnavailable(
            f"{method} {url} unreachable ({exc.__class__.__name__}: {exc})"
        ) from exc
