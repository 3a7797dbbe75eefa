"""Dataclasses for session state and API results."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import BunqError, BunqResponseError

T = TypeVar("T")


class HandshakeState(str, Enum):
    """How far a SessionContext has progressed through the handshake."""
    FRESH = "fresh"
    INSTALLED = "installed"
    REGISTERED = "registered"
    LIVE = "live"


def _present(value: Any) -> bool:
    return value is not None and value != ""


@dataclass(frozen=True)
class SessionContext:
    """Handshake artifacts, persisted between runs by the caller.

    Fields fill up strictly in order: installation token and server key,
    then device id, then session token and owner id. Instances are never
    modified; every handshake step returns a new one.
    """
    installation_token: str | None = None
    server_public_key: str | None = None
    device_id: int | str | None = None
    session_token: str | None = None
    owner_id: int | None = None

    def __post_init__(self) -> None:
        installed = _present(self.installation_token) and _present(self.server_public_key)
        if _present(self.device_id) and not installed:
            raise ValueError("device_id requires installation_token and server_public_key")
        if (_present(self.session_token) or _present(self.owner_id)) and not _present(
            self.device_id
        ):
            raise ValueError("session_token and owner_id require device_id")

    def is_installed(self) -> bool:
        return _present(self.installation_token) and _present(self.server_public_key)

    def is_registered(self) -> bool:
        return self.is_installed() and _present(self.device_id)

    def is_live(self) -> bool:
        return (
            self.is_registered()
            and _present(self.session_token)
            and _present(self.owner_id)
        )

    @property
    def state(self) -> HandshakeState:
        if self.is_live():
            return HandshakeState.LIVE
        if self.is_registered():
            return HandshakeState.REGISTERED
        if self.is_installed():
            return HandshakeState.INSTALLED
        return HandshakeState.FRESH

    def without_session(self) -> SessionContext:
        """Copy with the session token and owner id dropped."""
        return replace(self, session_token=None, owner_id=None)

    def to_record(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> SessionContext:
        """Rebuild a context from ``to_record()`` output.

        Unknown keys are ignored and missing keys become None.
        """
        device_id = record.get("device_id")
        owner_id = record.get("owner_id")
        return cls(
            installation_token=record.get("installation_token"),
            server_public_key=record.get("server_public_key"),
            device_id=device_id if _present(device_id) else None,
            session_token=record.get("session_token"),
            owner_id=int(owner_id) if _present(owner_id) else None,
        )

    def __repr__(self) -> str:
        # Tokens are credentials
        return (
            f"SessionContext(state={self.state.value}, device_id={self.device_id}, "
            f"owner_id={self.owner_id})"
        )


@dataclass
class SignedEnvelope:
    """A body exactly as sent or received, with the signature that covers it."""
    body: bytes
    signature: str | None = None


@dataclass
class ErrorDescription:
    """One entry of bunq's ``Error`` array."""
    description: str
    translated: str | None = None


@dataclass
class ErrorEnvelope:
    """Application-level error reported inside a verified response."""
    errors: list[ErrorDescription] = field(default_factory=list)
    status_code: int | None = None

    @property
    def message(self) -> str:
        return "; ".join(str(e.description) for e in self.errors)


@dataclass
class ApiResult(Generic[T]):
    """Outcome of a signed request: either ``value`` or ``error`` is set.

    ``error`` is an ErrorEnvelope when the service answered with an error,
    or a BunqError when the exchange itself failed (transport or integrity).
    """
    value: T | None = None
    error: ErrorEnvelope | BunqError | None = None
    status_code: int | None = None

    @classmethod
    def success(cls, value: T, status_code: int | None = None) -> ApiResult[T]:
        return cls(value=value, status_code=status_code)

    @classmethod
    def failure(
        cls, error: ErrorEnvelope | BunqError, status_code: int | None = None
    ) -> ApiResult[T]:
        return cls(error=error, status_code=status_code)

    @property
    def ok(self) -> bool:
        """True if the request succeeded and ``value`` is usable."""
        return self.error is None

    def unwrap(self) -> T:
        """Return ``value`` or raise the error."""
        if isinstance(self.error, ErrorEnvelope):
            raise BunqResponseError(self.error)
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class Installation:
    """Parsed ``POST /installation`` response."""
    id: int | None
    token: str
    server_public_key: str


@dataclass
class DeviceServer:
    """Parsed ``POST /device-server`` response."""
    id: int


@dataclass
class Session:
    """Parsed ``POST /session-server`` response."""
    id: int | None
    token: str
    owner_id: int
    owner_type: str
