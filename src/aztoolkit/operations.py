"""Submit-then-poll driver for long-running management API writes.

Many Azure write APIs (ARM resources, Synapse artifacts, tags) answer a
PUT with ``202 Accepted`` and a follow-up URL instead of the final
resource. The poller submits the request, then GETs the follow-up URL at
a fixed interval until the remote operation reaches a terminal state.

STATE MACHINE:
    Submitted -> InProgress -> Succeeded | Failed
    Submitted -> Succeeded   (API resolved synchronously)
    Submitted -> Failed

Terminal states are never left. Nothing here retries: a rejected submit or
a transport failure while polling is surfaced to the caller, who decides
whether to start over.

The transport is any azure-core client exposing ``send_request``
(``ResourceManagementClient``, ``PipelineClient``).
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from azure.core.exceptions import ServiceRequestError, ServiceResponseError
from azure.core.rest import HttpRequest, HttpResponse

from .config import (
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_TIMEOUT_SECONDS,
    ToolkitConfig,
)

logger = logging.getLogger(__name__)

# Status codes accepted for the initial write
ACCEPTED_SUBMIT_CODES: frozenset[int] = frozenset({200, 201, 202})

# Status codes on the follow-up URL
IN_PROGRESS_CODE = 202
SUCCESS_CODES: frozenset[int] = frozenset({200, 201, 204})

# Follow-up headers, in order of preference
STATUS_HEADERS: tuple[str, ...] = ("Azure-AsyncOperation", "Location")

# Body "status" values used by ARM async-operation monitors
IN_PROGRESS_BODY_STATES: frozenset[str] = frozenset(
    {"inprogress", "running", "accepted", "creating", "updating", "notstarted"}
)
FAILED_BODY_STATES: frozenset[str] = frozenset({"failed", "canceled", "cancelled"})


class OperationState(str, Enum):
    """Lifecycle states of an asynchronous operation."""

    SUBMITTED = "Submitted"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.SUCCEEDED, OperationState.FAILED)


ALLOWED_TRANSITIONS: dict[OperationState, frozenset[OperationState]] = {
    OperationState.SUBMITTED: frozenset(
        {OperationState.IN_PROGRESS, OperationState.SUCCEEDED, OperationState.FAILED}
    ),
    OperationState.IN_PROGRESS: frozenset({OperationState.SUCCEEDED, OperationState.FAILED}),
    OperationState.SUCCEEDED: frozenset(),
    OperationState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class OperationError:
    """Structured error reported by the remote API.

    Attributes:
        status_code: HTTP status of the response carrying the error.
        code: Service error code (e.g. "InvalidTemplate"), if any.
        message: Human-readable message.
        body: The raw decoded body, kept verbatim for the caller.
    """

    status_code: int | None
    code: str | None
    message: str
    body: Any = None

    @classmethod
    def from_response(cls, status_code: int | None, body: Any) -> OperationError:
        """Parse the ARM error envelope or the bare ``{code, message}`` shape."""
        payload = body
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            payload = body["error"]

        if isinstance(payload, dict):
            code = payload.get("code")
            message = payload.get("message") or f"Request failed with status {status_code}"
            return cls(status_code=status_code, code=code, message=str(message), body=body)

        text = body if isinstance(body, str) and body else f"Request failed with status {status_code}"
        return cls(status_code=status_code, code=None, message=text, body=body)

    def __str__(self) -> str:
        prefix = f"{self.code}: " if self.code else ""
        return f"{prefix}{self.message} (status {self.status_code})"


@dataclass
class Operation:
    """One asynchronous remote request.

    Owned by the caller that submitted it; only the poller mutates it.
    """

    target: str
    payload: Any
    method: str = "PUT"
    state: OperationState = OperationState.SUBMITTED
    status_url: str | None = None
    result: Any = None
    error: OperationError | None = None
    poll_count: int = 0
    history: list[OperationState] = field(default_factory=lambda: [OperationState.SUBMITTED])

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: OperationState) -> None:
        """Move to a new state, enforcing the state machine."""
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid operation transition {self.state.value} -> {new_state.value} "
                f"for {self.target}"
            )
        self.state = new_state
        self.history.append(new_state)
        if new_state.is_terminal:
            self.status_url = None


class AsyncOperationError(Exception):
    """Base class for poller errors."""

    def __init__(self, message: str, operation: Operation | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class SubmissionError(AsyncOperationError):
    """The initial write was rejected or could not be sent."""

    def __init__(
        self,
        message: str,
        operation: Operation | None = None,
        error: OperationError | None = None,
    ) -> None:
        super().__init__(message, operation)
        self.error = error


class PollError(AsyncOperationError):
    """A status check failed at the transport level."""

    pass


class PollTimeoutError(PollError):
    """The configured attempt or wall-clock bound was exceeded."""

    pass


class OperationFailed(AsyncOperationError):
    """The remote operation reached the Failed state."""

    def __init__(self, operation: Operation) -> None:
        super().__init__(
            f"Operation on {operation.target} failed: {operation.error}", operation
        )
        self.error = operation.error


class SupportsSendRequest(Protocol):
    """Any azure-core client that can send a raw request."""

    def send_request(self, request: HttpRequest, **kwargs: Any) -> HttpResponse: ...


def _decode_body(response: HttpResponse) -> Any:
    """Decode a JSON body; empty bodies decode to None.

    Raises:
        ValueError: If the body is not valid JSON.
    """
    text = response.text()
    if not text or not text.strip():
        return None
    return json.loads(text)


def _follow_up_url(response: HttpResponse) -> str | None:
    for header in STATUS_HEADERS:
        value = response.headers.get(header)
        if value:
            return value
    return None


def _body_status(body: Any) -> str | None:
    if isinstance(body, dict) and isinstance(body.get("status"), str):
        return body["status"].lower()
    return None


class AsyncOperationPoller:
    """Drives the submit-then-poll protocol against one client.

    The sleep interval is constant. Attempt and wall-clock bounds are
    optional; a bound of 0 disables it.
    """

    def __init__(
        self,
        client: SupportsSendRequest,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        timeout_seconds: float = DEFAULT_POLL_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._interval = interval_seconds
        self._max_attempts = max_attempts
        self._timeout = timeout_seconds
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, client: SupportsSendRequest, config: ToolkitConfig) -> AsyncOperationPoller:
        return cls(
            client,
            interval_seconds=config.poll_interval_seconds,
            max_attempts=config.max_poll_attempts,
            timeout_seconds=config.poll_timeout_seconds,
        )

    def submit(self, target: str, payload: Any, method: str = "PUT") -> Operation:
        """Send the write request.

        Args:
            target: Resource URL (absolute, or relative to the client's endpoint).
            payload: JSON-serializable request body.
            method: HTTP method, PUT or POST in practice.

        Returns:
            The operation in InProgress or Succeeded state.

        Raises:
            SubmissionError: On rejection, transport failure or a malformed body.
        """
        operation = Operation(target=target, payload=payload, method=method)

        try:
            response = self._client.send_request(HttpRequest(method, target, json=payload))
        except (ServiceRequestError, ServiceResponseError) as e:
            logger.error(
                "Operation submit failed",
                extra={"target": target, "method": method, "error": str(e)},
            )
            raise SubmissionError(f"Could not submit {method} {target}: {e}", operation) from e

        try:
            body = _decode_body(response)
        except ValueError as e:
            raise SubmissionError(
                f"Malformed response body from {method} {target}: {e}", operation
            ) from e

        if response.status_code not in ACCEPTED_SUBMIT_CODES:
            error = OperationError.from_response(response.status_code, body)
            logger.error(
                "Operation rejected",
                extra={
                    "target": target,
                    "status_code": response.status_code,
                    "error_code": error.code,
                },
            )
            raise SubmissionError(f"{method} {target} rejected: {error}", operation, error)

        status_url = _follow_up_url(response)
        if status_url:
            operation.status_url = status_url
            operation.transition(OperationState.IN_PROGRESS)
        elif response.status_code == IN_PROGRESS_CODE:
            raise SubmissionError(
                f"{method} {target} was accepted without a status location to poll", operation
            )
        else:
            operation.result = body
            operation.transition(OperationState.SUCCEEDED)

        logger.info(
            "Operation submitted",
            extra={
                "target": target,
                "status_code": response.status_code,
                "state": operation.state.value,
            },
        )
        return operation

    def poll(self, operation: Operation) -> Operation:
        """Poll until the operation is terminal.

        Sleeps before every status check. Returns the operation in
        Succeeded or Failed state; an operation that is not in progress is
        returned untouched.

        Raises:
            PollError: On transport failure or malformed body.
            PollTimeoutError: When a configured bound is exceeded.
        """
        started = self._clock()
        attempts = 0

        while operation.state == OperationState.IN_PROGRESS:
            if self._max_attempts and attempts >= self._max_attempts:
                raise PollTimeoutError(
                    f"Operation on {operation.target} still running after "
                    f"{attempts} status checks",
                    operation,
                )
            if self._timeout and self._clock() - started >= self._timeout:
                raise PollTimeoutError(
                    f"Operation on {operation.target} still running after "
                    f"{self._timeout} seconds",
                    operation,
                )

            self._sleep(self._interval)
            attempts += 1
            operation.poll_count += 1
            self._check_status(operation)

        return operation

    def _check_status(self, operation: Operation) -> None:
        status_url = operation.status_url
        assert status_url is not None, "in-progress operation without status URL"

        try:
            response = self._client.send_request(HttpRequest("GET", status_url))
        except (ServiceRequestError, ServiceResponseError) as e:
            logger.error(
                "Status check failed",
                extra={"target": operation.target, "error": str(e)},
            )
            raise PollError(f"Status check for {operation.target} failed: {e}", operation) from e

        try:
            body = _decode_body(response)
        except ValueError as e:
            raise PollError(
                f"Malformed status body for {operation.target}: {e}", operation
            ) from e

        status = _body_status(body)
        logger.debug(
            "Operation status",
            extra={
                "target": operation.target,
                "status_code": response.status_code,
                "body_status": status,
                "poll_count": operation.poll_count,
            },
        )

        if response.status_code == IN_PROGRESS_CODE or (
            response.status_code in SUCCESS_CODES and status in IN_PROGRESS_BODY_STATES
        ):
            next_url = response.headers.get("Location")
            if next_url:
                operation.status_url = next_url
            return

        if response.status_code in SUCCESS_CODES and status not in FAILED_BODY_STATES:
            operation.result = body
            operation.transition(OperationState.SUCCEEDED)
            logger.info(
                "Operation succeeded",
                extra={"target": operation.target, "poll_count": operation.poll_count},
            )
            return

        operation.error = OperationError.from_response(response.status_code, body)
        operation.transition(OperationState.FAILED)
        logger.warning(
            "Operation failed",
            extra={
                "target": operation.target,
                "status_code": response.status_code,
                "error_code": operation.error.code,
                "error": operation.error.message,
            },
        )

    def wait(self, operation: Operation) -> Operation:
        """Poll to completion and raise if the operation failed.

        Raises:
            OperationFailed: If the terminal state is Failed.
        """
        self.poll(operation)
        if operation.state == OperationState.FAILED:
            raise OperationFailed(operation)
        return operation

    def execute(self, target: str, payload: Any, method: str = "PUT") -> Operation:
        """Submit and wait for a terminal state."""
        return self.wait(self.submit(target, payload, method))
