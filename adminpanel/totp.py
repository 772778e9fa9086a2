# adminpanel/totp.py
# RFC 6238 TOTP (HMAC-SHA1) on top of the local Base32 codec.
import hmac
import hashlib
import re
import secrets
import struct
from urllib.parse import quote

from adminpanel import base32
from adminpanel.errors import InvalidParameters, InvalidSecret, TotpComputationError

DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30
ALGORITHM = "SHA1"

_BASE32_RE = re.compile(r"[A-Za-z2-7]+=*")


def is_valid_base32(secret) -> bool:
    """Letters A-Z (any case) and digits 2-7, optionally followed by '=' padding."""
    return isinstance(secret, str) and _BASE32_RE.fullmatch(secret) is not None


def _require_secret(secret):
    if not is_valid_base32(secret):
        raise InvalidSecret()


def _require_params(digits, period):
    for name, value in (("digits", digits), ("period", period)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise InvalidParameters(f"{name} must be a positive integer, got {value!r}")


def time_step(timestamp: float, period: int = DEFAULT_PERIOD) -> int:
    return int(timestamp // period)


def _hotp(key: bytes, counter: int, digits: int) -> str:
    msg = struct.pack(">Q", counter)
    digest = hmac.new(key, msg, hashlib.sha1).digest()
    offset = digest[19] & 0x0F
    code_int = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(code_int % (10 ** digits)).zfill(digits)


def generate_totp(secret: str, timestamp: float, digits: int = DEFAULT_DIGITS,
                  period: int = DEFAULT_PERIOD) -> str:
    """Generate the TOTP code for `secret` at Unix time `timestamp`."""
    _require_secret(secret)
    _require_params(digits, period)
    try:
        key = base32.decode(secret)
        return _hotp(key, time_step(timestamp, period), digits)
    except Exception as exc:
        raise TotpComputationError(f"TOTP generation failed: {exc}") from exc


def current_otp(secret: str, timestamp: float, digits: int = DEFAULT_DIGITS,
                period: int = DEFAULT_PERIOD) -> dict:
    """Code for `timestamp` plus the moment it expires."""
    otp = generate_totp(secret, timestamp, digits=digits, period=period)
    valid_until = (time_step(timestamp, period) + 1) * period
    return {
        "otp": otp,
        "valid_until": valid_until,
        "remaining_time": valid_until - timestamp,
        "period": period,
        "digits": digits,
        "algorithm": ALGORITHM,
    }


def match_offset(secret: str, token: str, timestamp: float, window: int = 1,
                 digits: int = DEFAULT_DIGITS, period: int = DEFAULT_PERIOD):
    """Return the step offset in [-window, window] whose code equals `token`, or None.

    A malformed secret raises InvalidSecret. A step that cannot be computed
    (e.g. a negative counter near the epoch) counts as a non-match.
    """
    _require_secret(secret)
    _require_params(digits, period)
    if not isinstance(token, str):
        return None

    step = time_step(timestamp, period)
    for offset in range(-window, window + 1):
        try:
            expected = generate_totp(secret, (step + offset) * period, digits=digits, period=period)
        except TotpComputationError:
            continue
        if hmac.compare_digest(expected.encode(), token.encode()):
            return offset
    return None


def verify_totp(secret: str, token: str, timestamp: float, window: int = 1,
                digits: int = DEFAULT_DIGITS, period: int = DEFAULT_PERIOD) -> bool:
    """Verify a code allowing +/- window steps for clock skew."""
    return match_offset(secret, token, timestamp, window=window, digits=digits, period=period) is not None


def generate_base32_secret(length: int = 32, token_bytes=secrets.token_bytes) -> str:
    """Random Base32 secret of exactly `length` characters, no padding."""
    if length < 1:
        raise ValueError("length must be a positive number of characters")
    raw = token_bytes(-(-length * 5 // 8))
    return base32.encode(raw)[:length]


def time_window(timestamp: float, period: int = DEFAULT_PERIOD) -> dict:
    _require_params(DEFAULT_DIGITS, period)
    step = time_step(timestamp, period)
    window_start = step * period
    return {
        "timestamp": timestamp,
        "current_window": step,
        "window_start": window_start,
        "window_end": window_start + period,
        "remaining_time": window_start + period - timestamp,
        "period": period,
    }


def upcoming_codes(secret: str, timestamp: float, count: int = 3,
                   digits: int = DEFAULT_DIGITS, period: int = DEFAULT_PERIOD):
    """Codes for the current step and the `count - 1` steps after it."""
    _require_params(digits, period)
    codes = []
    for i in range(count):
        at = timestamp + i * period
        window_start = time_step(at, period) * period
        codes.append({
            "otp": generate_totp(secret, at, digits=digits, period=period),
            "window": i,
            "timestamp": at,
            "window_start": window_start,
            "window_end": window_start + period,
            "is_current": i == 0,
        })
    return codes


def provisioning_uri(secret: str, issuer: str, account: str,
                     digits: int = DEFAULT_DIGITS, period: int = DEFAULT_PERIOD) -> str:
    """otpauth:// URI understood by authenticator apps."""
    label = f"{quote(issuer, safe='')}:{quote(account, safe='')}"
    return (
        f"otpauth://totp/{label}?secret={secret}&issuer={quote(issuer, safe='')}"
        f"&algorithm={ALGORITHM}&digits={digits}&period={period}"
    )
