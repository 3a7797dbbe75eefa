"""Error classes for the bunqers client."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import ErrorEnvelope


class BunqError(Exception):
    """Base error for bunqers operations."""

    code = "BUNQ_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code


class KeyGenerationError(BunqError):
    """The platform crypto backend could not produce a key pair."""

    code = "KEY_GENERATION_FAILED"


class PreconditionError(BunqError):
    """A handshake step or request was attempted from the wrong state."""

    code = "PRECONDITION_FAILED"


class TransportError(BunqError):
    """The HTTP exchange failed or the response body could not be parsed."""

    code = "TRANSPORT_ERROR"


class IntegrityError(BunqError):
    """The response could not be shown to come from the server. Its body is discarded."""

    code = "INTEGRITY_ERROR"


class MalformedSignatureError(IntegrityError):
    """Signature (or the key needed to check it) is missing or unparseable."""

    code = "MALFORMED_SIGNATURE"


class SignatureMismatchError(IntegrityError):
    """Signature parses but does not verify against the server public key."""

    code = "SIGNATURE_MISMATCH"


class HandshakeError(BunqError):
    """Base for handshake step failures.

    ``cause`` holds the failure value the step received from the transport
    (an ``ErrorEnvelope`` or another ``BunqError``), when there is one.
    """

    step = "handshake"

    def __init__(
        self,
        message: str,
        *,
        cause: Any = None,
        code: str | None = None,
        status_code: int | None = None,
    ):
        if status_code is None and cause is not None:
            status_code = getattr(cause, "status_code", None)
        super().__init__(message, code=code, status_code=status_code)
        self.cause = cause


class InstallationError(HandshakeError):
    code = "INSTALLATION_FAILED"
    step = "installation"


class RegistrationError(HandshakeError):
    code = "REGISTRATION_FAILED"
    step = "device-server"


class SessionCreationError(HandshakeError):
    code = "SESSION_CREATION_FAILED"
    step = "session-server"


class BunqResponseError(BunqError):
    """Raised by ``ApiResult.unwrap()`` when the service reported an error.

    Error envelopes are normally returned as data; this is only for callers
    who prefer exceptions.
    """

    code = "API_ERROR"

    def __init__(self, envelope: ErrorEnvelope):
        super().__init__(
            envelope.message or f"HTTP {envelope.status_code}",
            status_code=envelope.status_code,
        )
        self.envelope: ErrorEnvelope = envelope
