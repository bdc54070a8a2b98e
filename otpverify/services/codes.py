"""
Verification Code Generator

Generates fixed-length one-time codes from a defined alphabet using the
`secrets` module, and hashes codes for storage.
Code formats: 6 digits (e.g., 048213) or 6 uppercase alphanumerics (e.g., K7Q2ZD).
"""
import hashlib
import hmac
import secrets
import string
from enum import Enum


class CodeAlphabet(str, Enum):
    NUMERIC = "numeric"
    ALPHANUMERIC = "alphanumeric"

    @property
    def characters(self) -> str:
        if self is CodeAlphabet.NUMERIC:
            return string.digits
        return string.ascii_uppercase + string.digits


DEFAULT_CODE_LENGTH = 6


def generate_code(length: int = DEFAULT_CODE_LENGTH, alphabet: CodeAlphabet = CodeAlphabet.NUMERIC) -> str:
    """
    Generate a random code.

    Args:
        length: Number of characters
        alphabet: Character set to draw from

    Returns:
        Code string of exactly `length` characters

    Raises:
        ValueError: If length is not positive
    """
    if length <= 0:
        raise ValueError(f"Code length must be positive, got {length}")
    characters = CodeAlphabet(alphabet).characters
    return "".join(secrets.choice(characters) for _ in range(length))


def normalize_code(code: str) -> str:
    """Trim and upper-case a submitted code to match the generator's alphabet case."""
    return (code or "").strip().upper()


def hash_code(code: str, pepper: str) -> str:
    """Keyed digest of a normalized code; plaintext codes are never stored."""
    return hmac.new(pepper.encode(), normalize_code(code).encode(), hashlib.sha256).hexdigest()


def codes_match(submitted: str, code_hash: str, pepper: str) -> bool:
    """Constant-time comparison of a submitted code against a stored digest."""
    return hmac.compare_digest(hash_code(submitted, pepper), code_hash)


class CodeGenerator:
    """Stateless generator bound to a length and alphabet"""

    def __init__(self, length: int = DEFAULT_CODE_LENGTH, alphabet: CodeAlphabet = CodeAlphabet.NUMERIC):
        if length <= 0:
            raise ValueError(f"Code length must be positive, got {length}")
        self.length = length
        self.alphabet = CodeAlphabet(alphabet)

    def generate(self) -> str:
        return generate_code(self.length, self.alphabet)
