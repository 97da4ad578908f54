"""
tests/conftest.py
-----------------
Shared fixtures: an in-memory MySQL server with a source database ("app")
and a target database ("app_copy"), plus a second server for tests that
need the two databases on different hosts.
"""
from __future__ import annotations

import pytest

from fakes import FakeConnection, FakeServer


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def src(server: FakeServer) -> FakeConnection:
    return server.connect("app", "source")


@pytest.fixture
def tgt(server: FakeServer) -> FakeConnection:
    return server.connect("app_copy", "target")


@pytest.fixture
def remote_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def remote_tgt(remote_server: FakeServer) -> FakeConnection:
    return remote_server.connect("app_copy", "target")
