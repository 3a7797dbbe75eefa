"""Shared fixtures: an in-process stand-in for the bunq API that signs its responses."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

import pytest
from requests.structures import CaseInsensitiveDict

from bunqers.crypto import KeyManager, verify_signature
from bunqers.transport import SignedTransport
from bunqers.types import SessionContext

BASE_URL = "https://bunq.test/v1"


@dataclass
class FakeResponse:
    status_code: int
    content: bytes
    headers: CaseInsensitiveDict


@dataclass
class RecordedRequest:
    method: str
    url: str
    data: bytes | None
    headers: dict[str, str]
    timeout: float | None = None

    @property
    def path(self) -> str:
        return self.url[len(BASE_URL) + 1:]

    def json(self) -> Any:
        return json.loads(self.data.decode("utf-8"))


def _error(description: str) -> dict[str, Any]:
    return {
        "Error": [
            {
                "error_description": description,
                "error_description_translated": description,
            }
        ]
    }


class FakeBunq:
    """HTTP collaborator answering installation, device-server, session-server and user.

    Knobs for tests:
        overrides: path -> (status, payload) replacing the built-in answer
        failures: path -> exception raised instead of answering
        tamper: called on the body bytes after signing
        sign_responses: attach X-Bunq-Server-Signature
        signature_override: send this header value instead of a real signature
        signing_keys: key used to sign (defaults to the advertised server key)
    """

    def __init__(self, server_keys: KeyManager):
        self.server_keys = server_keys
        self.signing_keys = server_keys
        self.installation_token = "it1"
        self.device_id = 7
        self.session_token = "st1"
        self.owner_id = 42
        self.client_public_key: str | None = None
        self.valid_sessions: set[str] = {self.session_token}

        self.requests: list[RecordedRequest] = []
        self.overrides: dict[str, tuple[int, Any]] = {}
        self.failures: dict[str, Exception] = {}
        self.tamper: Callable[[bytes], bytes] | None = None
        self.sign_responses = True
        self.signature_override: str | None = None

    @property
    def paths(self) -> list[str]:
        return [r.path for r in self.requests]

    def request(self, method, url, data=None, headers=None, timeout=None):
        recorded = RecordedRequest(method, url, data, dict(headers or {}), timeout)
        self.requests.append(recorded)

        if recorded.path in self.failures:
            raise self.failures[recorded.path]
        if recorded.path in self.overrides:
            status, payload = self.overrides[recorded.path]
        else:
            status, payload = self._route(recorded)

        body = json.dumps(payload).encode("utf-8")
        response_headers = CaseInsensitiveDict()
        if self.signature_override is not None:
            response_headers["X-Bunq-Server-Signature"] = self.signature_override
        elif self.sign_responses:
            response_headers["X-Bunq-Server-Signature"] = self.signing_keys.sign(body)
        if self.tamper is not None:
            body = self.tamper(body)
        return FakeResponse(status_code=status, content=body, headers=response_headers)

    def _route(self, req: RecordedRequest) -> tuple[int, Any]:
        if req.path == "installation":
            self.client_public_key = req.json()["client_public_key"]
            return 200, {
                "Response": [
                    {"Id": {"id": 1}},
                    {"Token": {"id": 2, "token": self.installation_token}},
                    {"ServerPublicKey": {"server_public_key": self.server_keys.public_key_pem()}},
                ]
            }

        if req.data is not None and not self._client_signature_ok(req):
            return 400, _error("The request signature is invalid.")

        if req.path == "device-server":
            if req.headers.get("X-Bunq-Client-Authentication") != self.installation_token:
                return 401, _error("Insufficient authorisation.")
            return 200, {"Response": [{"Id": {"id": self.device_id}}]}

        if req.path == "session-server":
            if req.headers.get("X-Bunq-Client-Authentication") != self.installation_token:
                return 401, _error("Insufficient authorisation.")
            self.valid_sessions.add(self.session_token)
            return 200, {
                "Response": [
                    {"Id": {"id": 99}},
                    {"Token": {"id": 3, "token": self.session_token}},
                    {"UserPerson": {"id": self.owner_id, "display_name": "Test Person"}},
                ]
            }

        if req.headers.get("X-Bunq-Client-Authentication") not in self.valid_sessions:
            return 401, _error("Insufficient authorisation.")

        if req.path == "user":
            return 200, {
                "Response": [{"UserPerson": {"id": self.owner_id, "display_name": "Test Person"}}]
            }
        return 404, _error("Route not found.")

    def _client_signature_ok(self, req: RecordedRequest) -> bool:
        if self.client_public_key is None:
            return True
        signature = req.headers.get("X-Bunq-Client-Signature")
        if not signature:
            return False
        return verify_signature(req.data, signature, self.client_public_key)


@pytest.fixture(scope="session")
def server_keys() -> KeyManager:
    return KeyManager.generate()


@pytest.fixture(scope="session")
def client_keys() -> KeyManager:
    return KeyManager.generate()


@pytest.fixture(scope="session")
def other_keys() -> KeyManager:
    return KeyManager.generate()


@pytest.fixture
def fake_bunq(server_keys) -> FakeBunq:
    return FakeBunq(server_keys)


@pytest.fixture
def transport(client_keys, fake_bunq) -> SignedTransport:
    return SignedTransport(
        client_keys, base_url=BASE_URL, http=fake_bunq, log_warnings=False
    )


@pytest.fixture
def live_context(server_keys, client_keys, fake_bunq) -> SessionContext:
    fake_bunq.client_public_key = client_keys.public_key_pem()
    return SessionContext(
        installation_token="it1",
        server_public_key=server_keys.public_key_pem(),
        device_id=7,
        session_token="st1",
        owner_id=42,
    )
