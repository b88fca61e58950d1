"""
Signed envelopes exchanged with a DVote Gateway.

Bodies are canonicalized (keys sorted at every level) and serialized to
compact JSON before being signed with the Ethereum message prefix. Replies
are verified against the exact bytes received from the transport.
"""
import json
import logging
import time
from typing import Any, Mapping, Optional, Protocol, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError as EthValidationError
from eth_utils import keccak

from .exceptions import SigningUnavailableError
from .models import RequestEnvelope
from .utils import get_hex

logger = logging.getLogger(__name__)

_RECOVERY_ERRORS = (ValueError, TypeError, BadSignature, EthValidationError)


class MessageSigner(Protocol):
    """Protocol for custom signers"""
    address: str

    def sign_message(self, message: bytes) -> str:
        """Sign bytes with the Ethereum message prefix and return a 0x-prefixed hex signature"""
        ...


class LocalSigner:
    """
    Signer backed by a private key held in memory.

    Args:
        private_key: Hex private key, raw key bytes or an eth_account LocalAccount
    """

    def __init__(self, private_key: Union[str, bytes, LocalAccount]):
        if isinstance(private_key, LocalAccount):
            self._account = private_key
        else:
            self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def public_key(self) -> str:
        """Compressed public key, 0x-prefixed"""
        return "0x" + keys.PrivateKey(bytes(self._account.key)).public_key.to_compressed_bytes().hex()

    def sign_message(self, message: bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return "0x" + bytes(signed.signature).hex()


def canonicalize(data: Any) -> Any:
    """
    Copy of a JSON-like value with mapping keys sorted at every level.

    Lists keep their order. The input is not modified.

    Raises:
        TypeError: For values that have no JSON representation
    """
    if isinstance(data, Mapping):
        for key in data:
            if not isinstance(key, str):
                raise TypeError(f"JSON object keys must be strings, got {type(key).__name__}")
        return {key: canonicalize(data[key]) for key in sorted(data)}
    if isinstance(data, (list, tuple)):
        return [canonicalize(item) for item in data]
    if data is None or isinstance(data, (str, bool, int, float)):
        return data
    raise TypeError(f"JSON objects with {type(data).__name__} values are not supported")


def serialize(data: Any) -> bytes:
    """Canonical compact JSON encoding (UTF-8)."""
    return json.dumps(canonicalize(data), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(body: Any, signer: Optional[MessageSigner]) -> str:
    """
    Sign the canonical serialization of a body.

    Raises:
        SigningUnavailableError: If no signer is given
    """
    if signer is None:
        raise SigningUnavailableError("A signer is required to sign the payload")
    return signer.sign_message(serialize(body))


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def public_key_to_address(public_key: str) -> str:
    """
    Checksum address of a secp256k1 public key.

    Compressed (33 bytes) and uncompressed (64 or 65 bytes) keys are accepted.
    """
    raw = bytes.fromhex(_strip_0x(public_key))
    if len(raw) == 33:
        key = keys.PublicKey.from_compressed_bytes(raw)
    elif len(raw) == 65 and raw[0] == 4:
        key = keys.PublicKey(raw[1:])
    elif len(raw) == 64:
        key = keys.PublicKey(raw)
    else:
        raise ValueError(f"Invalid public key length: {len(raw)} bytes")
    return key.to_checksum_address()


def verify(signature: Optional[str], public_key: Optional[str], payload: bytes) -> bool:
    """
    Check that `payload` was signed by the owner of `public_key`.

    The payload must be the literal bytes received, not a re-encoding.

    Returns:
        True when no public key is set, False when a signature is required
        but missing or does not match
    """
    if not public_key:
        return True
    elif not signature:
        return False

    try:
        signature_bytes = bytes.fromhex(_strip_0x(signature))
        if len(signature_bytes) != 65:
            return False
        expected = public_key_to_address(public_key)
        actual = Account.recover_message(encode_defunct(primitive=payload), signature=signature_bytes)
    except _RECOVERY_ERRORS as e:
        logger.debug("Signature recovery failed: %s", e)
        return False
    return actual.lower() == expected.lower()


def verify_json(signature: Optional[str], public_key: Optional[str], body: Any) -> bool:
    """Same as verify() for a JSON-shaped body, used when raw bytes are not available."""
    return verify(signature, public_key, serialize(body))


def recover_public_key(body: Union[bytes, Any], signature: str, compressed: bool = True) -> str:
    """
    Public key that produced `signature` over a body (bytes or JSON-like).

    Raises:
        ValueError: If the signature is empty or malformed
    """
    if not signature:
        raise ValueError("Invalid signature")
    payload = body if isinstance(body, (bytes, bytearray)) else serialize(body)
    sig = bytearray(bytes.fromhex(_strip_0x(signature)))
    if len(sig) != 65:
        raise ValueError("Invalid signature length")
    if sig[64] >= 27:
        sig[64] -= 27

    msg_hash = keccak(b"\x19Ethereum Signed Message:\n" + str(len(payload)).encode() + bytes(payload))
    try:
        pub = keys.Signature(bytes(sig)).recover_public_key_from_msg_hash(msg_hash)
    except (BadSignature, EthValidationError) as e:
        raise ValueError(f"Invalid signature: {e}") from e
    if compressed:
        return "0x" + pub.to_compressed_bytes().hex()
    return "0x04" + pub.to_bytes().hex()


def build_request(
    body: Mapping[str, Any],
    signer: Optional[MessageSigner] = None,
    request_id: Optional[str] = None,
) -> RequestEnvelope:
    """
    Build the envelope for a Gateway request.

    The timestamp (seconds) is added when absent, the body is canonicalized
    and signed when a signer is given. The caller's mapping is not modified.
    """
    if not isinstance(body, Mapping):
        raise ValueError("The payload should be a mapping")

    request_body = dict(body)
    if request_body.get("timestamp") is None:
        request_body["timestamp"] = int(time.time())
    request_body = canonicalize(request_body)

    signature = sign(request_body, signer) if signer is not None else ""
    return RequestEnvelope(
        id=request_id or get_hex()[2:12],
        request=request_body,
        signature=signature,
    )


def encode_request(envelope: RequestEnvelope) -> bytes:
    """Wire bytes of a request envelope."""
    return serialize(envelope.model_dump())


def _skip_ws(text: str, idx: int) -> int:
    while idx < len(text) and text[idx] in " \t\n\r":
        idx += 1
    return idx


def extract_json_field_bytes(payload: bytes, field: str) -> Optional[bytes]:
    """
    Exact bytes of a top-level field value inside a JSON object.

    The whole object is scanned, so a reply that repeats a top-level key
    cannot smuggle a second value next to the signed one.

    Returns:
        The value bytes as they appear in `payload`, or None if the field
        is absent

    Raises:
        ValueError: If the payload is not a JSON object or repeats a
            top-level key
    """
    text = payload.decode("utf-8")
    decoder = json.JSONDecoder()

    idx = _skip_ws(text, 0)
    if idx >= len(text) or text[idx] != "{":
        raise ValueError("The payload is not a JSON object")
    idx = _skip_ws(text, idx + 1)
    if idx < len(text) and text[idx] == "}":
        return None

    seen = set()
    found = None
    while True:
        key, idx = decoder.raw_decode(text, idx)
        if not isinstance(key, str):
            raise ValueError("Invalid JSON object key")
        if key in seen:
            raise ValueError(f"Duplicate JSON object key: {key}")
        seen.add(key)
        idx = _skip_ws(text, idx)
        if idx >= len(text) or text[idx] != ":":
            raise ValueError("Expected ':' after a JSON object key")
        start = _skip_ws(text, idx + 1)
        _, end = decoder.raw_decode(text, start)
        if key == field:
            found = text[start:end].encode("utf-8")

        idx = _skip_ws(text, end)
        if idx < len(text) and text[idx] == ",":
            idx = _skip_ws(text, idx + 1)
            continue
        if idx < len(text) and text[idx] == "}":
            return found
        raise ValueError("Malformed JSON object")
