"""Signed request/response exchange with the bunq API.

Every request body is signed with the client key; every response body is
checked against the server key obtained at installation before anything in
it is handed to the caller.
"""
from __future__ import annotations

import json
import sys
import uuid
from typing import Any, Callable

import requests

from .crypto import KeyManager, canonicalize, verify_signature
from .errors import (
    BunqError,
    IntegrityError,
    MalformedSignatureError,
    PreconditionError,
    SignatureMismatchError,
    TransportError,
)
from .types import ApiResult, ErrorDescription, ErrorEnvelope, SessionContext, SignedEnvelope

CLIENT_SIGNATURE_HEADER = "X-Bunq-Client-Signature"
CLIENT_AUTH_HEADER = "X-Bunq-Client-Authentication"
CLIENT_REQUEST_ID_HEADER = "X-Bunq-Client-Request-Id"
SERVER_SIGNATURE_HEADER = "X-Bunq-Server-Signature"

DEFAULT_TIMEOUT = 30
DEFAULT_USER_AGENT = "bunqers"

Parser = Callable[[dict[str, Any]], Any]


class SignedTransport:
    """Signs outbound requests and verifies inbound responses.

    Args:
        key_manager: Client key pair used to sign request bodies
        base_url: API root, e.g. https://api.bunq.com/v1
        http: HTTP collaborator with a requests-style ``request()`` method
            (default: a fresh ``requests.Session``)
        timeout: Per-request timeout in seconds
        user_agent: Sent as User-Agent
        log_warnings: Emit BUNQ_INTEGRITY_FAILURE lines to stderr
    """

    def __init__(
        self,
        key_manager: KeyManager,
        *,
        base_url: str,
        http: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        log_warnings: bool = True,
    ):
        self._key_manager = key_manager
        self._base_url = base_url.rstrip("/")
        self._http = http if http is not None else requests.Session()
        self._timeout = timeout
        self._user_agent = user_agent
        self._log_warnings = log_warnings

    @property
    def base_url(self) -> str:
        return self._base_url

    def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        context: SessionContext | None = None,
        *,
        token: str | None = None,
        parse: Parser | None = None,
    ) -> ApiResult:
        """Send a signed request and return the verified, parsed result.

        Without ``token`` the context must be live and the session token
        authenticates the call. Handshake steps pass the installation token
        explicitly and only need an installed context.

        Integrity failures come back as ``ApiResult.failure`` holding a
        SignatureMismatchError or MalformedSignatureError; the response body
        is dropped.
        """
        if context is None:
            raise PreconditionError("send() requires a SessionContext")
        if token is None:
            if not context.is_live():
                raise PreconditionError(
                    f"{method} {path} requires a live session (state={context.state.value})"
                )
            token = context.session_token
        elif not context.is_installed():
            raise PreconditionError(
                f"{method} {path} requires an installed context (state={context.state.value})"
            )

        try:
            status_code, envelope = self._exchange(method, path, body, token=token, sign=True)
        except TransportError as exc:
            return ApiResult.failure(exc, exc.status_code)

        try:
            self._verify(envelope, context.server_public_key, status_code)
        except IntegrityError as exc:
            self._log_integrity_failure(method, path, status_code, exc)
            return ApiResult.failure(exc, status_code)

        return parse_envelope(envelope.body, status_code, parse)

    def send_unsigned(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        parse: Parser | None = None,
    ) -> tuple[ApiResult, SignedEnvelope | None]:
        """Send an unsigned, unauthenticated request (installation only).

        Nothing is verified here: no server key exists yet. The raw envelope
        is returned so the caller can check it once the key is known.
        """
        try:
            status_code, envelope = self._exchange(method, path, body, token=None, sign=False)
        except TransportError as exc:
            return ApiResult.failure(exc, exc.status_code), None
        return parse_envelope(envelope.body, status_code, parse), envelope

    # ------------------------------------------------------------------

    def _exchange(
        self,
        method: str,
        path: str,
        body: Any,
        *,
        token: str | None,
        sign: bool,
    ) -> tuple[int, SignedEnvelope]:
        headers: dict[str, str] = {
            "User-Agent": self._user_agent,
            "Cache-Control": "no-cache",
            CLIENT_REQUEST_ID_HEADER: str(uuid.uuid4()),
        }
        payload: bytes | None = None
        if body is not None:
            payload = canonicalize(body)
            headers["Content-Type"] = "application/json"
            if sign:
                headers[CLIENT_SIGNATURE_HEADER] = self._key_manager.sign(payload)
        if token:
            headers[CLIENT_AUTH_HEADER] = token

        try:
            resp = self._http.request(
                method.upper(),
                f"{self._base_url}/{path.lstrip('/')}",
                data=payload,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(
                f"{method.upper()} {path} failed: {exc}", code="REQUEST_FAILED"
            ) from exc

        return resp.status_code, SignedEnvelope(
            body=resp.content or b"",
            signature=resp.headers.get(SERVER_SIGNATURE_HEADER),
        )

    def _verify(
        self, envelope: SignedEnvelope, server_public_key: str, status_code: int
    ) -> None:
        if not envelope.signature:
            raise MalformedSignatureError(
                "Response carries no server signature",
                code="MISSING_SIGNATURE",
                status_code=status_code,
            )
        try:
            valid = verify_signature(envelope.body, envelope.signature, server_public_key)
        except MalformedSignatureError as exc:
            exc.status_code = status_code
            raise
        if not valid:
            raise SignatureMismatchError(
                "Response signature does not match the server public key",
                status_code=status_code,
            )

    def _log_integrity_failure(
        self, method: str, path: str, status_code: int, error: BunqError
    ) -> None:
        if not self._log_warnings:
            return
        print(
            f"BUNQ_INTEGRITY_FAILURE method={method.upper()} path={path} "
            f"status={status_code} error={error.code}",
            file=sys.stderr,
        )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def parse_envelope(body: bytes, status_code: int, parse: Parser | None = None) -> ApiResult:
    """Turn raw response bytes into an ApiResult.

    A JSON object with an ``Error`` key, or a non-2xx status, becomes an
    ErrorEnvelope failure. Anything else is a success, optionally passed
    through ``parse``.
    """
    try:
        root = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, ValueError) as exc:
        return ApiResult.failure(
            TransportError(
                f"Response body is not JSON: {exc}",
                code="MALFORMED_RESPONSE",
                status_code=status_code,
            ),
            status_code,
        )
    if not isinstance(root, dict):
        return ApiResult.failure(
            TransportError(
                "Response body is not a JSON object",
                code="MALFORMED_RESPONSE",
                status_code=status_code,
            ),
            status_code,
        )

    if "Error" in root or not 200 <= status_code < 300:
        return ApiResult.failure(_parse_error_envelope(root, status_code), status_code)

    if parse is None:
        return ApiResult.success(root, status_code)
    try:
        value = parse(root)
    except (KeyError, TypeError, ValueError, IndexError, AttributeError) as exc:
        return ApiResult.failure(
            TransportError(
                f"Unexpected response shape: {exc!r}",
                code="MALFORMED_RESPONSE",
                status_code=status_code,
            ),
            status_code,
        )
    return ApiResult.success(value, status_code)


def response_objects(root: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Flatten bunq's ``{"Response": [{"Type": {...}}, ...]}`` into ``{"Type": {...}}``."""
    items = root.get("Response")
    if not isinstance(items, list):
        raise ValueError("Response is not a list")
    objects: dict[str, dict[str, Any]] = {}
    for item in items:
        if not isinstance(item, dict):
            raise ValueError(f"Response item is not an object: {item!r}")
        for name, value in item.items():
            objects[name] = value
    return objects


def _parse_error_envelope(root: dict[str, Any], status_code: int) -> ErrorEnvelope:
    raw_errors = root.get("Error")
    if not isinstance(raw_errors, list):
        raw_errors = []
    errors = [
        ErrorDescription(
            description=str(e.get("error_description") or f"HTTP {status_code}"),
            translated=e.get("error_description_translated"),
        )
        for e in raw_errors
        if isinstance(e, dict)
    ]
    if not errors:
        errors = [ErrorDescription(description=f"HTTP {status_code}")]
    return ErrorEnvelope(errors=errors, status_code=status_code)
