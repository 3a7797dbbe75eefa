"""Install -> Register -> CreateSession.

Each step checks its precondition before touching the network, is skipped
when the context already satisfies it, and either returns a new context with
all of its fields set or raises and leaves the input as it was.

Trust-on-first-use: the installation response cannot be verified before it
arrives, because it is what delivers the server public key. Once the key is
known the installation response is checked against it; an unsigned
installation response is accepted with a BUNQ_TOFU_WARN line. Closing this
gap would need a server key pinned out of band.
"""
from __future__ import annotations

import sys
import threading
from dataclasses import replace
from typing import Any

from .crypto import KeyManager, verify_signature
from .errors import (
    HandshakeError,
    InstallationError,
    MalformedSignatureError,
    PreconditionError,
    RegistrationError,
    SessionCreationError,
)
from .transport import SignedTransport, response_objects
from .types import (
    ApiResult,
    DeviceServer,
    Installation,
    Session,
    SessionContext,
    SignedEnvelope,
)

# Any of these may own a session, depending on the kind of api key
OWNER_TYPES = (
    "UserPerson",
    "UserCompany",
    "UserApiKey",
    "UserPaymentServiceProvider",
)


class HandshakeStateMachine:
    """Drives a SessionContext from fresh to live.

    Steps are serialized by an internal lock, so one instance may be shared
    between threads that hand it the same context.

    Example::

        machine = HandshakeStateMachine(keys, transport)
        context = machine.ensure_live(SessionContext(), api_key, "my-server")
    """

    def __init__(
        self,
        key_manager: KeyManager,
        transport: SignedTransport,
        *,
        log_warnings: bool = True,
    ):
        self._key_manager = key_manager
        self._transport = transport
        self._log_warnings = log_warnings
        self._lock = threading.RLock()

    def install(self, context: SessionContext) -> SessionContext:
        """Send the client public key; store the installation token and server key."""
        with self._lock:
            if context.is_installed():
                return context

            body = {"client_public_key": self._key_manager.public_key_pem()}
            result, envelope = self._transport.send_unsigned(
                "POST", "installation", body, parse=_parse_installation
            )
            installation: Installation = _expect(result, InstallationError)
            self._check_first_use(envelope, installation.server_public_key)

            return replace(
                context,
                installation_token=installation.token,
                server_public_key=installation.server_public_key,
            )

    def register(
        self,
        context: SessionContext,
        api_key: str,
        device_description: str,
        permitted_ips: list[str] | None = None,
    ) -> SessionContext:
        """Bind the api key to this installation; store the device id."""
        with self._lock:
            if not context.is_installed():
                raise PreconditionError(
                    f"register requires an installed context (state={context.state.value})"
                )
            if context.is_registered():
                return context

            body = {
                "description": device_description,
                "secret": api_key,
                "permitted_ips": list(permitted_ips or []),
            }
            result = self._transport.send(
                "POST",
                "device-server",
                body,
                context,
                token=context.installation_token,
                parse=_parse_device_server,
            )
            device: DeviceServer = _expect(result, RegistrationError)

            return replace(context, device_id=device.id)

    def create_session(self, context: SessionContext, api_key: str) -> SessionContext:
        """Open a session; store the session token and owner id."""
        with self._lock:
            if not context.is_registered():
                raise PreconditionError(
                    f"create_session requires a registered context (state={context.state.value})"
                )
            if context.is_live():
                return context

            result = self._transport.send(
                "POST",
                "session-server",
                {"secret": api_key},
                context,
                token=context.installation_token,
                parse=_parse_session,
            )
            session: Session = _expect(result, SessionCreationError)

            return replace(
                context, session_token=session.token, owner_id=session.owner_id
            )

    def ensure_live(
        self,
        context: SessionContext,
        api_key: str,
        device_description: str,
    ) -> SessionContext:
        """Run whichever of install, register and create_session are still missing."""
        with self._lock:
            context = self.install(context)
            context = self.register(context, api_key, device_description)
            return self.create_session(context, api_key)

    def _check_first_use(
        self, envelope: SignedEnvelope | None, server_public_key: str
    ) -> None:
        if envelope is None or not envelope.signature:
            if self._log_warnings:
                print(
                    "BUNQ_TOFU_WARN step=installation signature=absent "
                    "server key accepted unverified",
                    file=sys.stderr,
                )
            return
        try:
            valid = verify_signature(envelope.body, envelope.signature, server_public_key)
        except MalformedSignatureError as exc:
            raise InstallationError(
                f"Installation response signature unusable: {exc.message}", cause=exc
            ) from exc
        if not valid:
            raise InstallationError(
                "Installation response is not signed by the server key it delivered",
                code="SIGNATURE_MISMATCH",
            )


def _expect(result: ApiResult, error_cls: type[HandshakeError]) -> Any:
    """Return the result's value or raise ``error_cls`` carrying its error."""
    if result.ok:
        return result.value
    cause = result.error
    reason = getattr(cause, "message", None) or str(cause)
    raise error_cls(f"{error_cls.step} failed: {reason}", cause=cause, status_code=result.status_code)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _parse_installation(root: dict[str, Any]) -> Installation:
    objects = response_objects(root)
    return Installation(
        id=objects.get("Id", {}).get("id"),
        token=objects["Token"]["token"],
        server_public_key=objects["ServerPublicKey"]["server_public_key"],
    )


def _parse_device_server(root: dict[str, Any]) -> DeviceServer:
    objects = response_objects(root)
    return DeviceServer(id=int(objects["Id"]["id"]))


def _parse_session(root: dict[str, Any]) -> Session:
    objects = response_objects(root)
    for owner_type in OWNER_TYPES:
        if owner_type in objects:
            return Session(
                id=objects.get("Id", {}).get("id"),
                token=objects["Token"]["token"],
                owner_id=int(objects[owner_type]["id"]),
                owner_type=owner_type,
            )
    raise KeyError(f"session response names no owner (expected one of {OWNER_TYPES})")
