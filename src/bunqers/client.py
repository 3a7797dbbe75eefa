"""bunqers client."""
from __future__ import annotations

import os
import sys
import threading
from typing import Any

from .crypto import KeyManager
from .handshake import OWNER_TYPES, HandshakeStateMachine
from .transport import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT, Parser, SignedTransport, response_objects
from .types import ApiResult, ErrorEnvelope, SessionContext

_PRODUCTION_BASE_URL = "https://api.bunq.com/v1"
_SANDBOX_BASE_URL = "https://public-api.sandbox.bunq.com/v1"
_DEFAULT_DEVICE_DESCRIPTION = "bunqers"


class Client:
    """Authenticated bunq client.

    Builds the key pair, transport and handshake machinery, brings the
    session up on ``connect()`` and signs every later call.

    Example::

        client = Client('sandbox_...', sandbox=True)
        context = client.connect()
        save(context.to_record())
        result = client.send('GET', f'user/{context.owner_id}/monetary-account-bank')
        if result.ok:
            print(result.value)

    Args:
        api_key: bunq api key (falls back to BUNQ_API_KEY)
        device_description: Name shown for this device in the bunq app
        context: Previously persisted SessionContext to resume from
        key_manager: Key pair the context was installed with (generated if omitted)
        base_url: API root (falls back to BUNQ_BASE_URL, then production/sandbox)
        sandbox: Use the bunq sandbox (also enabled by BUNQ_SANDBOX=true)
        http: HTTP collaborator passed to SignedTransport
        timeout: Per-request timeout in seconds
        user_agent: Sent as User-Agent
        log_warnings: Emit BUNQ_* warning lines to stderr
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        device_description: str = _DEFAULT_DEVICE_DESCRIPTION,
        context: SessionContext | None = None,
        key_manager: KeyManager | None = None,
        base_url: str | None = None,
        sandbox: bool = False,
        http: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        log_warnings: bool = True,
    ):
        api_key = api_key or os.environ.get("BUNQ_API_KEY")
        if not api_key:
            raise ValueError("api_key is required (or set BUNQ_API_KEY)")
        if context is not None and context.is_installed() and key_manager is None:
            raise ValueError("key_manager is required to resume an installed context")

        # Environment variable activation
        sandbox = sandbox or os.environ.get("BUNQ_SANDBOX", "").lower() in ("true", "1")
        base_url = base_url or os.environ.get("BUNQ_BASE_URL") or (
            _SANDBOX_BASE_URL if sandbox else _PRODUCTION_BASE_URL
        )

        self._api_key = api_key
        self._device_description = device_description
        self._log_warnings = log_warnings
        self._key_manager = key_manager or KeyManager.generate()
        self._transport = SignedTransport(
            self._key_manager,
            base_url=base_url,
            http=http,
            timeout=timeout,
            user_agent=user_agent,
            log_warnings=log_warnings,
        )
        self._handshake = HandshakeStateMachine(
            self._key_manager, self._transport, log_warnings=log_warnings
        )
        self._context = context or SessionContext()
        self._lock = threading.Lock()

    @property
    def context(self) -> SessionContext:
        """Current context snapshot; persist it with ``to_record()``."""
        return self._context

    @property
    def key_manager(self) -> KeyManager:
        return self._key_manager

    @property
    def handshake(self) -> HandshakeStateMachine:
        return self._handshake

    @property
    def base_url(self) -> str:
        return self._transport.base_url

    def connect(self) -> SessionContext:
        """Perform whatever part of the handshake is still missing.

        Raises the failing step's HandshakeError; the stored context is only
        replaced when every step succeeded.
        """
        with self._lock:
            self._context = self._handshake.ensure_live(
                self._context, self._api_key, self._device_description
            )
            return self._context

    def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        parse: Parser | None = None,
    ) -> ApiResult:
        """Signed call on the live session. See ``SignedTransport.send``."""
        return self._transport.send(method, path, body, self._context, parse=parse)

    def check_session(self) -> ApiResult:
        """Fetch ``GET /user``; on success the value is the owner id."""
        return self.send("GET", "user", parse=_parse_owner_id)

    def ensure_session(self) -> SessionContext:
        """Re-create the session if the service no longer accepts it.

        Only an error reported by the service counts as an expired session;
        transport and integrity failures are raised as they are.
        """
        with self._lock:
            context = self._context
            if context.is_live():
                result = self.check_session()
                if result.ok:
                    return context
                if not isinstance(result.error, ErrorEnvelope):
                    raise result.error
                if self._log_warnings:
                    print(
                        f"BUNQ_SESSION_EXPIRED device={context.device_id} "
                        f"owner={context.owner_id} status={result.status_code}",
                        file=sys.stderr,
                    )
                context = context.without_session()

            self._context = self._handshake.ensure_live(
                context, self._api_key, self._device_description
            )
            return self._context


def _parse_owner_id(root: dict[str, Any]) -> int:
    objects = response_objects(root)
    for user_type in OWNER_TYPES:
        if user_type in objects:
            return int(objects[user_type]["id"])
    raise KeyError(f"user response names no user (expected one of {OWNER_TYPES})")
