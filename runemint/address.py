"""Bitcoin address decoding.

Addresses arrive as strings from users and from the node's
``getrawchangeaddress``. They are turned into output scripts here and checked
against the network the wallet is running on.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

from .errors import NetworkMismatch
from .script import p2pkh_script, p2sh_script, witness_script

B58_DIGITS = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32M_CONST = 0x2BC830A3


class AddressError(ValueError):
    """Raised when an address string cannot be decoded."""


class Network(str, Enum):
    MAINNET = "bitcoin"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @classmethod
    def from_chain(cls, chain: str) -> "Network":
        """Map ``getblockchaininfo``'s ``chain`` field to a network."""

        mapping = {
            "main": cls.MAINNET,
            "test": cls.TESTNET,
            "testnet4": cls.TESTNET,
            "signet": cls.SIGNET,
            "regtest": cls.REGTEST,
        }
        try:
            return mapping[chain]
        except KeyError as exc:
            raise AddressError(f"unknown chain {chain}") from exc

    def __str__(self) -> str:
        return self.value


_TEST_NETWORKS = frozenset({Network.TESTNET, Network.SIGNET, Network.REGTEST})

_HRP_NETWORKS = {
    "bc": frozenset({Network.MAINNET}),
    "tb": frozenset({Network.TESTNET, Network.SIGNET}),
    "bcrt": frozenset({Network.REGTEST}),
}

_P2PKH_VERSIONS = {0x00: frozenset({Network.MAINNET}), 0x6F: _TEST_NETWORKS}
_P2SH_VERSIONS = {0x05: frozenset({Network.MAINNET}), 0xC4: _TEST_NETWORKS}


@dataclass(frozen=True)
class Address:
    """A decoded address: its output script and the networks it belongs to."""

    text: str
    script_pubkey: bytes
    networks: frozenset

    @classmethod
    def from_string(cls, text: str) -> "Address":
        text = text.strip()
        hrp = text.rpartition("1")[0].lower()
        if hrp in _HRP_NETWORKS:
            version, program = _decode_segwit(text)
            return cls(text, witness_script(version, program), _HRP_NETWORKS[hrp])
        return _decode_base58_address(text)

    def require_network(self, network: Network) -> "Address":
        if network not in self.networks:
            raise NetworkMismatch(self.text, network)
        return self

    def __str__(self) -> str:
        return self.text


def _double_sha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def base58_check_decode(text: str) -> bytes:
    """Decode a Base58Check string, verifying and stripping the checksum."""

    number = 0
    for character in text:
        if character not in B58_DIGITS:
            raise AddressError(f"invalid Base58 character: {character}")
        number = number * 58 + B58_DIGITS.index(character)

    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    padding = len(text) - len(text.lstrip(B58_DIGITS[0]))
    decoded = b"\x00" * padding + body
    if len(decoded) < 5:
        raise AddressError("Base58Check payload too short")
    payload, checksum = decoded[:-4], decoded[-4:]
    if _double_sha256(payload)[:4] != checksum:
        raise AddressError("Base58Check checksum mismatch")
    return payload


def _decode_base58_address(text: str) -> Address:
    payload = base58_check_decode(text)
    if len(payload) != 21:
        raise AddressError(f"unexpected Base58 payload length {len(payload)} for {text}")
    version, body = payload[0], payload[1:]
    if version in _P2PKH_VERSIONS:
        return Address(text, p2pkh_script(body), _P2PKH_VERSIONS[version])
    if version in _P2SH_VERSIONS:
        return Address(text, p2sh_script(body), _P2SH_VERSIONS[version])
    raise AddressError(f"unknown address version byte {version:#04x} in {text}")


def bech32_polymod(values: list[int]) -> int:
    """Compute bech32 checksum polymod."""
    GEN = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for value in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= GEN[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for bech32 checksum."""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _convertbits(data, frombits: int, tobits: int, pad: bool = True) -> list[int] | None:
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None

    return ret


def _decode_segwit(text: str) -> tuple[int, bytes]:
    """Decode a bech32 (witness v0) or bech32m (v1+) address.

    Reference:
        BIP173: https://github.com/bitcoin/bips/blob/master/bip-0173.mediawiki
        BIP350: https://github.com/bitcoin/bips/blob/master/bip-0350.mediawiki
    """

    if text.lower() != text and text.upper() != text:
        raise AddressError(f"mixed case in {text}")
    lowered = text.lower()
    hrp, _, data_part = lowered.rpartition("1")
    if len(data_part) < 6:
        raise AddressError(f"bech32 data too short in {text}")
    try:
        data = [BECH32_CHARSET.index(character) for character in data_part]
    except ValueError as exc:
        raise AddressError(f"invalid bech32 character in {text}") from exc

    polymod = bech32_polymod(bech32_hrp_expand(hrp) + data)
    if polymod not in (1, BECH32M_CONST):
        raise AddressError(f"bech32 checksum mismatch in {text}")
    if not data[:-6]:
        raise AddressError(f"missing witness version in {text}")

    version = data[0]
    program = _convertbits(data[1:-6], 5, 8, pad=False)
    if program is None or not 2 <= len(program) <= 40:
        raise AddressError(f"invalid witness program in {text}")
    if version > 16:
        raise AddressError(f"invalid witness version {version} in {text}")
    if version == 0:
        if polymod != 1:
            raise AddressError(f"witness v0 address {text} must use bech32")
        if len(program) not in (20, 32):
            raise AddressError(f"invalid witness v0 program length in {text}")
    elif polymod != BECH32M_CONST:
        raise AddressError(f"witness v{version} address {text} must use bech32m")
    return version, bytes(program)
