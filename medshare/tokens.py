"""
Short, human-typable grant tokens with collision checking.
"""

import logging
import secrets
from typing import Callable, Iterator

from medshare.config import MAX_TOKEN_ATTEMPTS, TOKEN_ALPHABET, TOKEN_LENGTH
from medshare.errors import GenerationExhausted

logger = logging.getLogger(__name__)


def normalize_token(raw: str) -> str:
    """Trim and upper-case a token typed by a person."""
    return (raw or "").strip().upper()


def is_well_formed(token: str, alphabet: str = TOKEN_ALPHABET,
                   length: int = TOKEN_LENGTH) -> bool:
    return len(token) == length and all(ch in alphabet for ch in token)


class TokenGenerator:
    """
    Draws fixed-length tokens from an unambiguous alphabet.

    The existence check does not reserve anything; callers must still
    rely on the unique constraint when inserting.
    """

    def __init__(self, alphabet: str = TOKEN_ALPHABET, length: int = TOKEN_LENGTH,
                 max_attempts: int = MAX_TOKEN_ATTEMPTS,
                 choice: Callable[[str], str] = secrets.choice):
        if len(set(alphabet)) != len(alphabet):
            raise ValueError("token alphabet must not repeat characters")
        self.alphabet = alphabet
        self.length = length
        self.max_attempts = max_attempts
        self._choice = choice

    def draw(self) -> str:
        return "".join(self._choice(self.alphabet) for _ in range(self.length))

    def candidates(self, exists: Callable[[str], bool]) -> Iterator[str]:
        """
        Yield tokens not yet present according to *exists*.

        Every drawn token counts against ``max_attempts``, whether it was
        rejected by the pre-check or later by the caller's insert.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.draw()
            if exists(candidate):
                logger.warning("[tokens] Collision on attempt %d/%d",
                               attempt, self.max_attempts)
                continue
            yield candidate

    def generate(self, exists: Callable[[str], bool]) -> str:
        """Return one unused token or raise GenerationExhausted."""
        for candidate in self.candidates(exists):
            return candidate
        raise GenerationExhausted()
