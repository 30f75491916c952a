"""
Capability-based access control and the pause switch.

Privileged callers present a ``Capability``: an Ed25519-signed grant of a role
to a holder address, scoped to one engine. The engine is constructed with a
``PermissionChecker`` holding only the authority's verify key, so it can check
grants but never mint them.
"""
import logging
from dataclasses import dataclass
from enum import Enum

import msgpack
import nacl.signing

from curve_sale.crypto import (
    address_from_verify_key,
    generate_signing_keypair,
    sign_message,
    verify_message,
)
from curve_sale.errors import Unauthorized

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "ADMIN"
    PAUSER = "PAUSER"
    EMERGENCY = "EMERGENCY"


@dataclass(frozen=True)
class Capability:
    holder: str
    role: Role
    scope: str
    signature: bytes = b""

    def signing_data(self) -> bytes:
        """Canonical bytes covered by the signature."""
        return msgpack.packb([self.holder, self.role.value, self.scope], use_bin_type=True)


class PermissionChecker:
    """Verifies capabilities against one authority's verify key."""

    def __init__(self, verify_key: nacl.signing.VerifyKey):
        self.verify_key = verify_key
        self.revoked: set[bytes] = set()

    @property
    def authority_address(self) -> str:
        return address_from_verify_key(self.verify_key)

    def revoke(self, capability: Capability):
        self.revoked.add(capability.signature)

    def require(self, capability: Capability, role: Role, scope: str) -> str:
        """
        Check a capability and return its holder.

        ADMIN grants satisfy every role within their scope.

        Raises:
            Unauthorized: missing, forged, revoked, mis-scoped or wrong-role grant
        """
        if capability is None:
            raise Unauthorized(f"{role.value} capability required")
        if capability.scope != scope:
            raise Unauthorized(f"Capability scoped to {capability.scope}, not {scope}")
        if capability.role not in (role, Role.ADMIN):
            raise Unauthorized(
                f"{capability.holder} holds {capability.role.value}, needs {role.value}"
            )
        if capability.signature in self.revoked:
            raise Unauthorized(f"Capability of {capability.holder} has been revoked")
        if not verify_message(self.verify_key, capability.signing_data(), capability.signature):
            raise Unauthorized("Capability signature is invalid")
        return capability.holder


class PermissionAuthority:
    """Holds the signing key and issues capabilities."""

    def __init__(self, signing_key: nacl.signing.SigningKey = None):
        if signing_key is None:
            signing_key, _ = generate_signing_keypair()
        self._signing_key = signing_key
        self.checker = PermissionChecker(signing_key.verify_key)

    def issue(self, holder: str, role: Role, scope: str) -> Capability:
        unsigned = Capability(holder=holder, role=role, scope=scope)
        signature = sign_message(self._signing_key, unsigned.signing_data())
        logger.info(f"Issued {role.value} capability to {holder} for {scope}")
        return Capability(holder=holder, role=role, scope=scope, signature=signature)


class PauseSwitch:
    """Global pause state for one engine."""

    def __init__(self, checker: PermissionChecker, scope: str):
        self.checker = checker
        self.scope = scope
        self.paused = False

    def pause(self, capability: Capability):
        holder = self.checker.require(capability, Role.PAUSER, self.scope)
        self.paused = True
        logger.warning(f"Trading paused by {holder}")

    def unpause(self, capability: Capability):
        holder = self.checker.require(capability, Role.PAUSER, self.scope)
        self.paused = False
        logger.info(f"Trading unpaused by {holder}")
