# adminpanel/base32.py
"""RFC 4648 Base32 codec used for shared TOTP secrets."""

from adminpanel.errors import InvalidEncoding

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
PAD = "="

_INDEX = {ch: i for i, ch in enumerate(ALPHABET)}
_INDEX.update({ch.lower(): i for ch, i in _INDEX.items()})


def encode(data: bytes) -> str:
    """Encode bytes to padded Base32 text. Empty input gives an empty string."""
    out = []
    buffer = 0
    bits = 0

    for byte in data:
        buffer = (buffer << 8) | byte
        bits += 8
        while bits >= 5:
            bits -= 5
            out.append(ALPHABET[(buffer >> bits) & 0x1F])
        buffer &= (1 << bits) - 1

    if bits:
        out.append(ALPHABET[(buffer << (5 - bits)) & 0x1F])

    if out:
        out.extend(PAD * (-len(out) % 8))
    return "".join(out)


def decode(text: str) -> bytes:
    """Decode Base32 text (any case, any amount of '=') to bytes.

    Trailing bits that do not fill a whole byte are dropped.
    """
    out = bytearray()
    buffer = 0
    bits = 0

    for ch in text.replace(PAD, ""):
        index = _INDEX.get(ch)
        if index is None:
            raise InvalidEncoding(ch)
        buffer = (buffer << 5) | index
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((buffer >> bits) & 0xFF)
            buffer &= (1 << bits) - 1

    return bytes(out)
