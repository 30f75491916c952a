"""
Hashing, address and signing helpers shared by the sale engine and its
collaborators.
"""
import re
import nacl.signing
import nacl.exceptions

ZERO_ADDRESS = "0x" + "00" * 20

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def generate_hash(data: bytes) -> bytes:
    """Generates a Keccak-256 hash."""
    from Crypto.Hash import keccak
    return keccak.new(digest_bits=256, data=data).digest()


def address_from_bytes(data: bytes) -> str:
    """Derives an address from arbitrary bytes (last 20 bytes of the hash)."""
    return "0x" + generate_hash(data)[-20:].hex()


def address_from_label(label: str) -> str:
    """Deterministic address for a human readable label, e.g. 'alice'."""
    return address_from_bytes(label.encode('utf-8'))


def is_valid_address(address) -> bool:
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def is_zero_address(address: str) -> bool:
    return address == ZERO_ADDRESS


# --- Ed25519 signing using PyNaCl ---

def generate_signing_keypair() -> tuple[nacl.signing.SigningKey, nacl.signing.VerifyKey]:
    """Generates an Ed25519 signing key and its verify key."""
    signing_key = nacl.signing.SigningKey.generate()
    return signing_key, signing_key.verify_key


def address_from_verify_key(verify_key: nacl.signing.VerifyKey) -> str:
    """Derives an address from an Ed25519 verify key."""
    return address_from_bytes(verify_key.encode())


def sign_message(signing_key: nacl.signing.SigningKey, message: bytes) -> bytes:
    """Returns the detached Ed25519 signature of a message."""
    return signing_key.sign(message).signature


def verify_message(verify_key: nacl.signing.VerifyKey, message: bytes,
                   signature: bytes) -> bool:
    """Verify a detached signature."""
    try:
        verify_key.verify(message, signature)
        return True
    except (nacl.exceptions.BadSignatureError, ValueError):
        # Catch both cryptographic failures and format/length errors
        return False
