import hmac
import re
import secrets

OTP_PATTERN = re.compile(r"^[0-9]{6}$")


def generate_otp(length: int = 6) -> str:
    """
    Generates a cryptographically secure OTP of a given length.

    Args:
        length (int): The length of the OTP.

    Returns:
        str: A zero-padded OTP as a string.
    """
    otp = secrets.randbelow(10**length)
    return str(otp).zfill(length)


def codes_match(expected: str, presented: str) -> bool:
    """Constant-time comparison of a stored code against a presented one."""
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def is_well_formed(code: str) -> bool:
    return bool(code) and OTP_PATTERN.match(code) is not None
