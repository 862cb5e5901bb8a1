"""Cryptographically secure verification code generation."""

import random
import secrets
import string

NUMERIC_ALPHABET = string.digits
ALPHANUMERIC_ALPHABET = string.digits + string.ascii_uppercase


class CodeGenerator:
    """Draws codes uniformly from fixed alphabets.

    Uses ``secrets.SystemRandom`` unless another source is injected.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or secrets.SystemRandom()

    def _draw(self, alphabet: str, length: int) -> str:
        if length < 1:
            raise ValueError("Code length must be positive")
        return "".join(self._rng.choice(alphabet) for _ in range(length))

    def generate_numeric_code(self, length: int = 6) -> str:
        return self._draw(NUMERIC_ALPHABET, length)

    def generate_alphanumeric_code(self, length: int = 8) -> str:
        return self._draw(ALPHANUMERIC_ALPHABET, length)

    def generate_unique_codes(self, count: int, length: int) -> list[str]:
        """Generate ``count`` distinct alphanumeric codes."""
        if count > len(ALPHANUMERIC_ALPHABET) ** length:
            raise ValueError("Not enough distinct codes for the requested length")
        codes: list[str] = []
        seen: set[str] = set()
        while len(codes) < count:
            code = self.generate_alphanumeric_code(length)
            if code not in seen:
                seen.add(code)
                codes.append(code)
        return codes
