"""
Contract-call transaction building and signing.

Only the shape the keeper needs is supported: single-signature standard
authorization (P2PKH), anchor mode "any", no post conditions.
"""

import hashlib
import struct
from dataclasses import dataclass, field, replace
from typing import List

from coincurve import PrivateKey

from substack_keeper.core.exceptions import ConfigurationError, ClarityError
from .c32 import c32_address, c32_address_decode, hash160
from .clarity import ClarityValue, serialize


AUTH_TYPE_STANDARD = 0x04
HASH_MODE_P2PKH = 0x00
KEY_ENCODING_COMPRESSED = 0x00
KEY_ENCODING_UNCOMPRESSED = 0x01
ANCHOR_MODE_ANY = 0x03
POST_CONDITION_MODE_ALLOW = 0x01
POST_CONDITION_MODE_DENY = 0x02
PAYLOAD_CONTRACT_CALL = 0x02

EMPTY_SIGNATURE = b"\x00" * 65


def sha512_256(data: bytes) -> bytes:
    return hashlib.new("sha512_256", data).digest()


class StacksPrivateKey:
    """
    Operator signing key.

    Accepts 64 hex chars (uncompressed public key) or 66 hex chars ending in
    ``01`` (compressed public key), optionally ``0x``-prefixed.
    """

    def __init__(self, key_hex: str):
        key_hex = (key_hex or "").strip()
        if key_hex.startswith("0x"):
            key_hex = key_hex[2:]

        if len(key_hex) == 66 and key_hex.endswith("01"):
            self.compressed = True
            secret_hex = key_hex[:64]
        elif len(key_hex) == 64:
            self.compressed = False
            secret_hex = key_hex
        else:
            raise ConfigurationError("Keeper private key must be 64 or 66 hex characters")

        try:
            self._key = PrivateKey(bytes.fromhex(secret_hex))
        except ValueError as e:
            raise ConfigurationError(f"Invalid keeper private key: {e}")

    @property
    def public_key(self) -> bytes:
        return self._key.public_key.format(compressed=self.compressed)

    @property
    def key_encoding(self) -> int:
        return KEY_ENCODING_COMPRESSED if self.compressed else KEY_ENCODING_UNCOMPRESSED

    @property
    def signer_hash(self) -> bytes:
        return hash160(self.public_key)

    def address(self, version: int) -> str:
        return c32_address(version, self.signer_hash)

    def sign(self, digest: bytes) -> bytes:
        """Recoverable signature in recovery-id-first (VRS) order."""
        signature = self._key.sign_recoverable(digest, hasher=None)
        # coincurve returns r || s || recovery_id
        return signature[64:65] + signature[:64]

    def __repr__(self) -> str:
        return f"StacksPrivateKey(compressed={self.compressed})"


def _encode_name(name: str) -> bytes:
    raw = name.encode("ascii")
    if not 0 < len(raw) <= 128:
        raise ClarityError(f"Invalid contract or function name: {name!r}")
    return bytes([len(raw)]) + raw


@dataclass
class ContractCallTransaction:
    """An unsigned or signed contract-call transaction."""
    version: int
    chain_id: int
    signer: bytes
    nonce: int
    fee: int
    key_encoding: int
    contract_address: str
    contract_name: str
    function_name: str
    function_args: List[ClarityValue] = field(default_factory=list)
    post_condition_mode: int = POST_CONDITION_MODE_ALLOW
    anchor_mode: int = ANCHOR_MODE_ANY
    signature: bytes = EMPTY_SIGNATURE

    def _serialize_auth(self) -> bytes:
        return (
            bytes([AUTH_TYPE_STANDARD, HASH_MODE_P2PKH])
            + self.signer
            + struct.pack(">QQ", self.nonce, self.fee)
            + bytes([self.key_encoding])
            + self.signature
        )

    def _serialize_payload(self) -> bytes:
        version, address_hash = c32_address_decode(self.contract_address)
        return (
            bytes([PAYLOAD_CONTRACT_CALL, version])
            + address_hash
            + _encode_name(self.contract_name)
            + _encode_name(self.function_name)
            + struct.pack(">I", len(self.function_args))
            + b"".join(serialize(arg) for arg in self.function_args)
        )

    def serialize(self) -> bytes:
        return (
            bytes([self.version])
            + struct.pack(">I", self.chain_id)
            + self._serialize_auth()
            + bytes([self.anchor_mode, self.post_condition_mode])
            + struct.pack(">I", 0)  # post conditions
            + self._serialize_payload()
        )

    def txid(self) -> str:
        return sha512_256(self.serialize()).hex()

    def presign_hash(self) -> bytes:
        """Hash the origin signs: cleared-auth sighash bound to fee and nonce."""
        cleared = replace(self, nonce=0, fee=0, signature=EMPTY_SIGNATURE)
        initial_sighash = sha512_256(cleared.serialize())
        return sha512_256(
            initial_sighash
            + bytes([AUTH_TYPE_STANDARD])
            + struct.pack(">QQ", self.fee, self.nonce)
        )

    def sign(self, key: StacksPrivateKey) -> "ContractCallTransaction":
        if key.signer_hash != self.signer:
            raise ConfigurationError("Signing key does not match transaction signer")
        self.signature = key.sign(self.presign_hash())
        return self


def make_contract_call(
    key: StacksPrivateKey,
    network_params: dict,
    contract_address: str,
    contract_name: str,
    function_name: str,
    function_args: List[ClarityValue],
    nonce: int,
    fee: int,
    post_condition_mode: int = POST_CONDITION_MODE_ALLOW,
) -> ContractCallTransaction:
    """Build and sign a contract-call transaction."""
    transaction = ContractCallTransaction(
        version=network_params["tx_version"],
        chain_id=network_params["chain_id"],
        signer=key.signer_hash,
        nonce=nonce,
        fee=fee,
        key_encoding=key.key_encoding,
        contract_address=contract_address,
        contract_name=contract_name,
        function_name=function_name,
        function_args=list(function_args),
        post_condition_mode=post_condition_mode,
    )
    return transaction.sign(key)
