"""Shared pytest fixtures for replit_export tests.

Fixtures are organized into categories:
- Sample data fixtures (Repl records, archives)
- Response builders (buffered and streamed HTTP responses)
- FakeReplit, an in-memory stand-in for the Replit web API

Usage:
    # In any test file, fixtures are automatically available:
    def test_example(sample_repl_data, fake_replit):
        fake_replit.add_repl(sample_repl_data, {"main.py": "print(1)"})
"""

from __future__ import annotations

import io
import json
import zipfile
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import MagicMock

import pytest

from replit_export.models.repl import Repl
from replit_export.utils.http_client import HTTPResponse

# =============================================================================
# Response Builders
# =============================================================================


def make_http_response(
    status: int = 200,
    body: Any = None,
    headers: Mapping[str, str] | None = None,
    url: str = "https://replit.com/graphql",
) -> HTTPResponse:
    """Build a buffered HTTPResponse; dict/list bodies are JSON encoded."""
    if body is None:
        content = b""
    elif isinstance(body, bytes):
        content = body
    else:
        content = json.dumps(body).encode()
    return HTTPResponse(
        status=status, headers=dict(headers or {}), content=content, url=url
    )


def make_stream_response(
    status: int = 200,
    body: bytes = b"",
    headers: Mapping[str, str] | None = None,
    url: str = "https://replit.com/@alice/demo.zip",
    chunk_size: int | None = None,
) -> MagicMock:
    """Build a mock of an open aiohttp response with a chunked body."""
    response = MagicMock()
    response.status = status
    response.url = url
    response.headers = (
        dict(headers) if headers is not None else {"Content-Type": "application/zip"}
    )

    async def iter_chunked(size: int) -> AsyncIterator[bytes]:
        step = chunk_size or size
        for start in range(0, len(body), step):
            yield body[start : start + step]

    response.content.iter_chunked = iter_chunked
    return response


def make_zip(files: Mapping[str, str | bytes]) -> bytes:
    """Build an in-memory zip archive from a path -> content mapping."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def graphql_body(data: dict[str, Any] | None = None, errors: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {}
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    return body


# =============================================================================
# Sample Repl Data
# =============================================================================


@pytest.fixture
def repl_factory() -> Callable[..., dict[str, Any]]:
    """Factory for Repl records in API (camelCase) shape.

    Usage:
        def test_example(repl_factory):
            data = repl_factory("r1", slug="flask-app", owner="bob")
    """

    def _make(
        repl_id: str = "repl-1",
        *,
        slug: str | None = None,
        owner: str | None = "alice",
        **extra: Any,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": repl_id,
            "title": (slug or repl_id).replace("-", " ").title(),
            "slug": slug or repl_id,
            "isPrivate": False,
            "wasPublished": False,
            "timeCreated": "2023-04-01T12:00:00.000Z",
            "timeUpdated": "2023-05-01T12:00:00.000Z",
            "user": {"id": 42, "username": owner} if owner else None,
            "lang": {"id": "python3", "displayName": "Python"},
            "config": {
                "isServer": False,
                "isExtension": False,
                "gitRemoteUrl": None,
                "isVnc": False,
                "doClone": False,
            },
            "multiplayers": [],
            "source": None,
            "domains": [],
            "isAlwaysOn": False,
            "isBoosted": False,
        }
        data.update(extra)
        return data

    return _make


@pytest.fixture
def sample_repl_data(repl_factory: Callable[..., dict[str, Any]]) -> dict[str, Any]:
    """Sample Repl record (a small Flask app with a custom domain)."""
    return repl_factory(
        "3f1c2a9e-7d4b-4e0a-9c51-2b6f8e1d0a77",
        slug="flask-app",
        title="Flask App",
        isPrivate=True,
        config={
            "isServer": True,
            "isExtension": False,
            "gitRemoteUrl": "https://github.com/alice/flask-app",
            "isVnc": False,
            "doClone": False,
        },
        multiplayers=[{"id": 7, "username": "bob"}],
        domains=[
            {
                "domain": "flask.example.com",
                "state": "VERIFIED",
                "hosting_deployment_id": "dep-1",
            }
        ],
    )


@pytest.fixture
def sample_repl(sample_repl_data: dict[str, Any]) -> Repl:
    return Repl.model_validate(sample_repl_data)


@pytest.fixture
def sample_archive() -> bytes:
    """Zip archive of a small Repl with content the default filters remove."""
    return make_zip(
        {
            "main.py": "print('hello')\n",
            "src/app.py": "app = None\n",
            "node_modules/left-pad/index.js": "module.exports = 1\n",
            ".cargo/registry/cache": b"\x00\x01",
            ".cache/replit/env/latest.json": json.dumps(
                {"environment": {"API_KEY": "secret", "PATH": "/usr/bin"}}
            ),
        }
    )


# =============================================================================
# Fake Replit API
# =============================================================================


class FakeReplit:
    """In-memory stand-in for HTTPClient answering like replit.com.

    The listing cursor is the index of the next Repl, so pages are
    deterministic. Archive paths answer 500 while listed in `failing`.
    """

    def __init__(self, user_id: int = 42, username: str = "alice") -> None:
        self.user_id = user_id
        self.username = username
        self.repls: list[dict[str, Any]] = []
        self.archives: dict[str, bytes] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, Any]] = []
        self.closed = False
        self.authenticated = True

    def add_repl(
        self, data: dict[str, Any], files: Mapping[str, str | bytes] | None = None
    ) -> None:
        self.repls.append(data)
        owner = (data.get("user") or {}).get("username", self.username)
        self.archives[f"/@{owner}/{data['slug']}.zip"] = make_zip(
            files or {"main.py": "print(1)\n"}
        )

    async def graphql(
        self, operation_name: str, variables: Mapping[str, Any], query: str
    ) -> HTTPResponse:
        self.calls.append((operation_name, dict(variables)))
        if not self.authenticated:
            return make_http_response(body=graphql_body({"currentUser": None}))
        if operation_name == "CurrentUser":
            return make_http_response(
                body=graphql_body(
                    {"currentUser": {"id": self.user_id, "username": self.username}}
                )
            )

        start = int(variables["after"] or 0)
        end = start + int(variables["count"])
        items = self.repls[start:end]
        listing = {
            "items": items,
            "pageInfo": {
                "hasNextPage": end < len(self.repls),
                "nextCursor": str(min(end, len(self.repls))) if items else None,
            },
        }
        return make_http_response(
            body=graphql_body({"currentUser": {"exportRepls": listing}})
        )

    async def request(self, method: str, path: str, **kwargs: Any) -> HTTPResponse:
        self.calls.append(("request", path))
        return make_http_response(status=404, url=f"https://replit.com{path}")

    @asynccontextmanager
    async def stream(
        self, method: str, path: str, **kwargs: Any
    ) -> AsyncIterator[MagicMock]:
        self.calls.append(("stream", path))
        if path in self.failing or path not in self.archives:
            yield make_stream_response(
                status=500, headers={"Content-Type": "text/plain"}
            )
        else:
            yield make_stream_response(body=self.archives[path])

    async def close(self) -> None:
        self.closed = True

    def operations(self, name: str) -> list[Any]:
        return [args for op, args in self.calls if op == name]


@pytest.fixture
def fake_replit() -> FakeReplit:
    return FakeReplit()


# =============================================================================
# Builder Fixtures
# =============================================================================


@pytest.fixture
def http_response() -> Callable[..., HTTPResponse]:
    """Factory for buffered HTTPResponse objects (see make_http_response)."""
    return make_http_response


@pytest.fixture
def stream_response() -> Callable[..., MagicMock]:
    """Factory for streamed aiohttp response mocks (see make_stream_response)."""
    return make_stream_response


@pytest.fixture
def zip_bytes() -> Callable[[Mapping[str, str | bytes]], bytes]:
    """Factory for in-memory zip archives (see make_zip)."""
    return make_zip


@pytest.fixture
def graphql() -> Callable[..., dict[str, Any]]:
    """Factory for GraphQL envelopes: graphql(data, errors=None)."""
    return graphql_body
