"""Pool client interface and the Octavia v2 REST implementation.

The reconciler only depends on the PoolClient protocol. OctaviaClient
implements it with azure-core's generic HTTP pipeline; every failure is
translated into RemoteError so that error classification does not depend
on the HTTP library.

Transport-level retries are switched off here: retrying belongs to the
reconciler's retry wrapper, which knows the operation deadline.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from azure.core import PipelineClient
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
    map_error,
)
from azure.core.pipeline.policies import (
    HeadersPolicy,
    NetworkTraceLoggingPolicy,
    UserAgentPolicy,
)
from azure.core.rest import HttpRequest, HttpResponse
from pydantic import ValidationError

from .errors import ErrorKind, RemoteError, error_kind_for_status
from .models import DependencySnapshot, PoolSnapshot, PoolSpec, PoolUpdate

logger = logging.getLogger(__name__)

R = TypeVar("R")

USER_AGENT = "lbpool/0.1.0"
API_PREFIX = "/v2/lbaas"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30

ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    403: ClientAuthenticationError,
    404: ResourceNotFoundError,
}


class PoolClient(Protocol):
    """Remote operations the reconciler needs.

    All calls block. Every failure, including an unparseable response, is
    raised as RemoteError.
    """

    def create_pool(self, spec: PoolSpec) -> PoolSnapshot: ...

    def get_pool(self, pool_id: str) -> PoolSnapshot: ...

    def update_pool(self, pool_id: str, update: PoolUpdate) -> PoolSnapshot: ...

    def delete_pool(self, pool_id: str) -> None: ...

    def get_listener(self, listener_id: str) -> DependencySnapshot: ...

    def get_loadbalancer(self, loadbalancer_id: str) -> DependencySnapshot: ...


def _remote_error_from(error: Exception) -> RemoteError:
    """Normalize an azure-core exception into a RemoteError."""
    if isinstance(error, HttpResponseError):
        status_code = error.status_code
        if status_code is None and error.response is not None:
            status_code = error.response.status_code
        kind = error_kind_for_status(status_code)
        if isinstance(error, ClientAuthenticationError) and status_code is None:
            kind = ErrorKind.UNAUTHORIZED
        elif isinstance(error, ResourceNotFoundError) and status_code is None:
            kind = ErrorKind.NOT_FOUND
        return RemoteError(kind, error.message or str(error), status_code)
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return RemoteError(ErrorKind.CONNECTION, str(error))
    return RemoteError(ErrorKind.UNKNOWN, str(error))


def _fault_message(response: HttpResponse) -> str:
    """Extract the Octavia faultstring, falling back to the reason phrase."""
    try:
        body = response.json()
    except ValueError:
        return f"{response.status_code} {response.reason}"
    if isinstance(body, dict):
        return str(body.get("faultstring") or body.get("description") or body)
    return str(body)


def _unwrap(data: dict[str, Any], key: str, parse: Callable[[Any], R]) -> R:
    """Parse the object inside a response envelope such as {"pool": {...}}.

    Raises:
        RemoteError: UNKNOWN if the envelope is missing or malformed.
    """
    try:
        return parse(data[key])
    except (KeyError, TypeError, ValidationError) as e:
        raise RemoteError(ErrorKind.UNKNOWN, f"Malformed {key} in response: {e}") from e


class OctaviaClient:
    """PoolClient for the OpenStack Octavia v2 API."""

    def __init__(
        self,
        endpoint: str,
        token: str,
        *,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: Any | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: Load-balancer service endpoint, e.g. https://lb.example:9876.
            token: Keystone token sent as X-Auth-Token.
            request_timeout_seconds: Read timeout for each HTTP call.
            transport: Optional azure-core transport (used by tests).
        """
        self._endpoint = endpoint.rstrip("/")
        self._request_timeout = request_timeout_seconds

        policies = [
            HeadersPolicy(base_headers={"X-Auth-Token": token, "Accept": "application/json"}),
            UserAgentPolicy(base_user_agent=USER_AGENT),
            NetworkTraceLoggingPolicy(),
        ]
        kwargs: dict[str, Any] = {"policies": policies}
        if transport is not None:
            kwargs["transport"] = transport
        self._client = PipelineClient(base_url=self._endpoint, **kwargs)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OctaviaClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _send(
        self,
        method: str,
        path: str,
        expected: tuple[int, ...],
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return its decoded JSON body.

        Raises:
            RemoteError: For any non-expected status or transport failure.
        """
        request = HttpRequest(method, f"{API_PREFIX}{path}", json=body)
        request.url = self._client.format_url(request.url)

        try:
            response = self._client.send_request(request, read_timeout=self._request_timeout)
            if response.status_code not in expected:
                message = _fault_message(response)
                map_error(status_code=response.status_code, response=response, error_map=ERROR_MAP)
                raise HttpResponseError(message=message, response=response)
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            remote_error = _remote_error_from(e)
            logger.debug(
                "Octavia request failed",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": remote_error.status_code,
                    "error_kind": remote_error.kind.value,
                },
            )
            raise remote_error from e

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                ErrorKind.UNKNOWN,
                f"Invalid JSON in response to {method} {path}: {e}",
                response.status_code,
            ) from e

    def create_pool(self, spec: PoolSpec) -> PoolSnapshot:
        data = self._send("POST", "/pools", (201, 202), body={"pool": spec.to_api()})
        return _unwrap(data, "pool", PoolSnapshot.from_api)

    def get_pool(self, pool_id: str) -> PoolSnapshot:
        data = self._send("GET", f"/pools/{pool_id}", (200,))
        return _unwrap(data, "pool", PoolSnapshot.from_api)

    def update_pool(self, pool_id: str, update: PoolUpdate) -> PoolSnapshot:
        data = self._send("PUT", f"/pools/{pool_id}", (200, 202), body={"pool": update.to_api()})
        return _unwrap(data, "pool", PoolSnapshot.from_api)

    def delete_pool(self, pool_id: str) -> None:
        self._send("DELETE", f"/pools/{pool_id}", (202, 204))

    def get_listener(self, listener_id: str) -> DependencySnapshot:
        data = self._send("GET", f"/listeners/{listener_id}", (200,))
        return _unwrap(data, "listener", DependencySnapshot.model_validate)

    def get_loadbalancer(self, loadbalancer_id: str) -> DependencySnapshot:
        data = self._send("GET", f"/loadbalancers/{loadbalancer_id}", (200,))
        return _unwrap(data, "loadbalancer", DependencySnapshot.model_validate)
