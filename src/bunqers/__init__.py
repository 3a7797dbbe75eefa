"""bunqers: signed session and transport layer for the bunq API."""
from .client import Client
from .handshake import HandshakeStateMachine
from .transport import SignedTransport, parse_envelope, response_objects
from .errors import (
    BunqError,
    BunqResponseError,
    HandshakeError,
    InstallationError,
    IntegrityError,
    KeyGenerationError,
    MalformedSignatureError,
    PreconditionError,
    RegistrationError,
    SessionCreationError,
    SignatureMismatchError,
    TransportError,
)
from .crypto import (
    KeyManager,
    canonicalize,
    load_public_key,
    sort_keys_deep,
    verify_signature,
)
from .types import (
    ApiResult,
    DeviceServer,
    ErrorDescription,
    ErrorEnvelope,
    HandshakeState,
    Installation,
    Session,
    SessionContext,
    SignedEnvelope,
)

__all__ = [
    "Client",
    "HandshakeStateMachine",
    "SignedTransport",
    "parse_envelope",
    "response_objects",
    "BunqError",
    "BunqResponseError",
    "HandshakeError",
    "InstallationError",
    "IntegrityError",
    "KeyGenerationError",
    "MalformedSignatureError",
    "PreconditionError",
    "RegistrationError",
    "SessionCreationError",
    "SignatureMismatchError",
    "TransportError",
    "KeyManager",
    "canonicalize",
    "load_public_key",
    "sort_keys_deep",
    "verify_signature",
    "ApiResult",
    "DeviceServer",
    "ErrorDescription",
    "ErrorEnvelope",
    "HandshakeState",
    "Installation",
    "Session",
    "SessionContext",
    "SignedEnvelope",
]
