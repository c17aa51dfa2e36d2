"""CKB address encoding (RFC 0021).

Addresses are encoded in the full format (bech32m). Decoding also accepts the
deprecated short and full-data/full-type formats (bech32) so older wallets can
still be paid.
"""

from ckbvault.ckb.scripts import SECP256K1_MULTISIG_CODE_HASH, NetworkConfig
from ckbvault.ckb.types import HASH_TYPES, Script, bytes_to_hex, hex_to_bytes
from ckbvault.errors import ValidationError

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3

FORMAT_FULL = 0x00
FORMAT_SHORT = 0x01
FORMAT_FULL_DATA = 0x02
FORMAT_FULL_TYPE = 0x04

_HASH_TYPE_NAMES = {code: name for name, code in HASH_TYPES.items()}


def _polymod(values: list[int]) -> int:
    generator = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= generator[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _convertbits(data, frombits: int, tobits: int, pad: bool = True) -> list[int]:
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
        raise ValidationError("Invalid address padding")
    return ret


def bech32_encode(hrp: str, payload: bytes, const: int = BECH32M_CONST) -> str:
    data = _convertbits(payload, 8, 5)
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ const
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(CHARSET[d] for d in data + checksum)


def bech32_decode(address: str) -> tuple[str, bytes, int]:
    """Decode a bech32/bech32m string.

    Returns:
        (hrp, payload bytes, checksum constant)
    """
    if address.lower() != address and address.upper() != address:
        raise ValidationError("Address mixes upper and lower case")
    address = address.lower()
    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address):
        raise ValidationError("Malformed address")

    hrp = address[:pos]
    try:
        data = [CHARSET.index(char) for char in address[pos + 1:]]
    except ValueError:
        raise ValidationError("Address contains invalid characters") from None

    const = _polymod(_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        raise ValidationError("Address checksum mismatch")

    return hrp, bytes(_convertbits(data[:-6], 5, 8, pad=False)), const


def encode_address(script: Script, network: NetworkConfig) -> str:
    """Encode a lock script as a full-format address."""
    payload = (
        bytes([FORMAT_FULL])
        + hex_to_bytes(script.code_hash)
        + bytes([HASH_TYPES[script.hash_type]])
        + hex_to_bytes(script.args)
    )
    return bech32_encode(network.address_prefix, payload, BECH32M_CONST)


def decode_address(address: str, network: NetworkConfig) -> Script:
    """Parse an address of the given network into its lock script.

    Raises:
        ValidationError: If the address is malformed or for another network
    """
    if not address:
        raise ValidationError("Address is required")

    hrp, payload, const = bech32_decode(address.strip())
    if hrp != network.address_prefix:
        raise ValidationError(
            f"Address prefix '{hrp}' does not match {network.name} ('{network.address_prefix}')"
        )
    if not payload:
        raise ValidationError("Empty address payload")

    fmt, body = payload[0], payload[1:]

    if fmt == FORMAT_FULL:
        if const != BECH32M_CONST or len(body) < 33:
            raise ValidationError("Invalid full-format address")
        hash_type = _HASH_TYPE_NAMES.get(body[32])
        if hash_type is None:
            raise ValidationError(f"Unknown hash type {body[32]}")
        return Script(
            code_hash=bytes_to_hex(body[:32]),
            hash_type=hash_type,
            args=bytes_to_hex(body[33:]),
        )

    if const != BECH32_CONST:
        raise ValidationError("Deprecated address formats must use bech32")

    if fmt == FORMAT_SHORT:
        if len(body) != 21:
            raise ValidationError("Invalid short-format address")
        code_hashes = {
            0x00: network.secp256k1_blake160.code_hash,
            0x01: SECP256K1_MULTISIG_CODE_HASH,
        }
        code_hash = code_hashes.get(body[0])
        if code_hash is None:
            raise ValidationError(f"Unsupported short address code hash index {body[0]}")
        return Script(code_hash=code_hash, hash_type="type", args=bytes_to_hex(body[1:]))

    if fmt in (FORMAT_FULL_DATA, FORMAT_FULL_TYPE):
        if len(body) < 32:
            raise ValidationError("Invalid full-format address")
        return Script(
            code_hash=bytes_to_hex(body[:32]),
            hash_type="data" if fmt == FORMAT_FULL_DATA else "type",
            args=bytes_to_hex(body[32:]),
        )

    raise ValidationError(f"Unknown address format 0x{fmt:02x}")


def normalize_address(address: str, network: NetworkConfig) -> str:
    """Canonical full-format form of any accepted address."""
    return encode_address(decode_address(address, network), network)
