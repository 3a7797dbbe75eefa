"""End-to-end tests against the bunq sandbox.

Prerequisites:
  - BUNQ_SANDBOX_API_KEY set to a sandbox api key
  - Network access to public-api.sandbox.bunq.com
"""
import os

import pytest

from bunqers import Client, KeyManager, SessionContext


API_KEY = os.environ.get("BUNQ_SANDBOX_API_KEY")

pytestmark = pytest.mark.skipif(not API_KEY, reason="BUNQ_SANDBOX_API_KEY not set")


@pytest.fixture(scope="module")
def sandbox_keys():
    return KeyManager.generate()


@pytest.fixture(scope="module")
def sandbox_record(sandbox_keys):
    client = Client(
        API_KEY, device_description="bunqers-e2e", key_manager=sandbox_keys, sandbox=True
    )
    return client.connect().to_record()


class TestSandboxE2E:
    def test_handshake_reaches_live(self, sandbox_record):
        context = SessionContext.from_record(sandbox_record)
        assert context.is_live()
        assert context.owner_id

    def test_check_session(self, sandbox_keys, sandbox_record):
        client = Client(
            API_KEY,
            key_manager=sandbox_keys,
            context=SessionContext.from_record(sandbox_record),
            sandbox=True,
        )
        result = client.check_session()
        assert result.ok
        assert result.value == sandbox_record["owner_id"]

    def test_resumed_context_skips_handshake(self, sandbox_keys, sandbox_record):
        client = Client(
            API_KEY,
            key_manager=sandbox_keys,
            context=SessionContext.from_record(sandbox_record),
            sandbox=True,
        )
        assert client.connect().to_record() == sandbox_record

    def test_unknown_route_is_error_envelope(self, sandbox_keys, sandbox_record):
        client = Client(
            API_KEY,
            key_manager=sandbox_keys,
            context=SessionContext.from_record(sandbox_record),
            sandbox=True,
        )
        result = client.send("GET", "user/0/monetary-account-bank/0")
        assert not result.ok
        assert result.status_code >= 400
