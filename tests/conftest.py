"""Shared fakes for deployer, client and pipeline tests."""

import json
from typing import Callable, Optional

import httpx
import pytest

from defender_toolkit.clients.factory import ClientFactory
from defender_toolkit.safety.guardian import ChangeGuard
from defender_toolkit.shell.runner import CommandResult, CommandRunner, redact


class ScriptedRunner(CommandRunner):
    """
    CommandRunner that never spawns processes.
    The first registered needle found in the joined argv decides the result;
    unmatched commands succeed with empty output.
    """

    def __init__(self, guard: ChangeGuard):
        super().__init__(guard=guard, powershell="pwsh")
        self.responses: list[tuple[str, int, str, str]] = []
        self.calls: list[list[str]] = []
        self.inputs: list[Optional[bytes]] = []

    def respond(self, needle: str, returncode: int = 0, stdout: str = "", stderr: str = ""):
        self.responses.append((needle, returncode, stdout, stderr))
        return self

    def service(self, name: str, status: str):
        return self.respond(f"Get-Service -Name '{name}'", stdout=f"STATUS:{status}\n")

    async def run(self, argv, description="", mutating=True, timeout=None, secrets=(), input=None):
        shown = redact(argv, secrets)
        self.calls.append(shown)
        self.inputs.append(input)
        if mutating and not self.guard.validate_command(description or argv[0], shown):
            return CommandResult(argv=shown, returncode=0, dry_run=True)
        joined = " ".join(argv)
        for needle, returncode, stdout, stderr in self.responses:
            if needle in joined:
                return CommandResult(argv=shown, returncode=returncode, stdout=stdout, stderr=stderr)
        return CommandResult(argv=shown, returncode=0)

    def ran(self, needle: str) -> bool:
        return any(needle in " ".join(argv) for argv in self.calls)


class FakeAuthenticator:
    """Hands out a fixed token and records the scopes asked for."""

    def __init__(self):
        self.scopes: list[str] = []

    async def acquire_token(self, scope: str) -> str:
        self.scopes.append(scope)
        return "test-token"


class FakeApi:
    """
    Route table for httpx.MockTransport.
    Routes are (method, path suffix) -> response JSON or callable(request).
    Every request is kept in `requests`.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, suffix: str, response, status: int = 200):
        self.routes[(method, suffix)] = (status, response)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for (method, suffix), (status, response) in self.routes.items():
            if request.method == method and path.endswith(suffix):
                if callable(response):
                    return response(request)
                return httpx.Response(status, json=response)
        return httpx.Response(404, json={"error": {"code": "NotFound", "message": "no route"}})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def sent(self, method: str, suffix: str) -> list[dict]:
        """JSON bodies of requests that hit a route."""
        return [
            json.loads(r.content) if r.content else {}
            for r in self.requests
            if r.method == method and r.url.path.endswith(suffix)
        ]


@pytest.fixture
def guard():
    return ChangeGuard(dry_run=False)


@pytest.fixture
def dry_guard():
    return ChangeGuard(dry_run=True)


@pytest.fixture
def fake_api():
    return FakeApi()


def make_factory(guard: ChangeGuard, api: Optional[FakeApi] = None) -> ClientFactory:
    api = api or FakeApi()
    return ClientFactory(FakeAuthenticator(), guard, transport=api.transport())


@pytest.fixture
def factory_for() -> Callable[..., ClientFactory]:
    return make_factory


@pytest.fixture
def runner(guard):
    return ScriptedRunner(guard)


@pytest.fixture
def dry_runner(dry_guard):
    return ScriptedRunner(dry_guard)
