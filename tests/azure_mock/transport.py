"""Scripted send_request client.

Mimics the ``send_request`` surface of ResourceManagementClient and
PipelineClient: each call pops the next scripted response (or exception)
and records the request for assertions.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from azure.core.exceptions import HttpResponseError
from azure.core.rest import HttpRequest


class _Headers(dict):
    """Case-insensitive header lookup, like azure-core's."""

    def __init__(self, headers: dict[str, str] | None = None) -> None:
        super().__init__({k.lower(): v for k, v in (headers or {}).items()})

    def get(self, key: str, default: Any = None) -> Any:
        return super().get(key.lower(), default)

    def __getitem__(self, key: str) -> Any:
        return super().__getitem__(key.lower())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(key.lower())


class MockResponse:
    """Minimal stand-in for azure.core.rest.HttpResponse."""

    def __init__(
        self,
        status_code: int,
        body: Any = None,
        headers: dict[str, str] | None = None,
        raw_text: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = _Headers(headers)
        if raw_text is not None:
            self._text = raw_text
        elif body is None:
            self._text = ""
        else:
            self._text = json.dumps(body)

    def text(self, encoding: str | None = None) -> str:
        return self._text

    def json(self) -> Any:
        return json.loads(self._text) if self._text else None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise HttpResponseError(message=f"HTTP {self.status_code}", response=None)


def mock_response(
    status_code: int,
    body: Any = None,
    headers: dict[str, str] | None = None,
    raw_text: str | None = None,
) -> MockResponse:
    return MockResponse(status_code, body, headers, raw_text)


class MockTransport:
    """Client whose send_request replays a script.

    Script items are MockResponse objects or exceptions to raise.
    """

    def __init__(self, script: Iterable[MockResponse | Exception] = ()) -> None:
        self._script: list[MockResponse | Exception] = list(script)
        self.requests: list[HttpRequest] = []

    def queue(self, *items: MockResponse | Exception) -> None:
        self._script.extend(items)

    @property
    def remaining(self) -> int:
        return len(self._script)

    @property
    def methods(self) -> list[str]:
        return [request.method for request in self.requests]

    @property
    def urls(self) -> list[str]:
        return [request.url for request in self.requests]

    def sent_json(self, index: int) -> Any:
        """Decoded JSON body of the request at ``index``."""
        return json.loads(self.requests[index].content)

    def send_request(self, request: HttpRequest, **kwargs: Any) -> MockResponse:
        self.requests.append(request)
        if not self._script:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item
