"""Ownership tokens: public slugs and secret edit tokens.

A QR code is owned by whoever holds its edit token. The raw token is shown
once at creation; only ``"<salt-hex>:<sha256-hex>"`` is ever stored.
Randomness is injected so tests can drive the generators deterministically.
"""

import hashlib
import hmac
import random
import re
import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass

from qrforall.errors import SlugAllocationError
from qrforall.logging import audit, get_logger, trace

log = get_logger("tokens")

# Slug alphabet: A-Z, a-z, 0-9
SLUG_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
SLUG_LENGTH = 9

EDIT_TOKEN_BYTES = 32
SALT_BYTES = 16
DEFAULT_MAX_SLUG_ATTEMPTS = 10

_SALT_RE = re.compile(rf"^[0-9a-f]{{{SALT_BYTES * 2}}}$")
_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class Credentials:
    """Everything minted for a new QR code. ``edit_token`` goes to the client, never to storage."""

    slug: str
    edit_token: str
    stored_hash: str

    def __repr__(self) -> str:
        return f"Credentials(slug={self.slug!r}, edit_token='***', stored_hash='***')"


def _digest(salt_hex: str, token: str) -> str:
    return hashlib.sha256((salt_hex + token).encode("utf-8")).hexdigest()


class TokenManager:
    """Issues slugs and edit tokens and verifies presented tokens.

    Args:
        rng: Source for slug characters. Defaults to the OS CSPRNG.
        token_bytes: ``n -> bytes`` source for tokens and salts. Must be a CSPRNG
            in production; defaults to :func:`secrets.token_bytes`.
        max_slug_attempts: Collision retries before :class:`SlugAllocationError`.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        token_bytes: Callable[[int], bytes] | None = None,
        max_slug_attempts: int = DEFAULT_MAX_SLUG_ATTEMPTS,
    ):
        if max_slug_attempts < 1:
            raise ValueError("max_slug_attempts must be >= 1")
        self._rng = rng or secrets.SystemRandom()
        self._token_bytes = token_bytes or secrets.token_bytes
        self.max_slug_attempts = max_slug_attempts

    # ------------------------------------------------------------------
    # Slugs
    # ------------------------------------------------------------------

    def generate_slug(self) -> str:
        """Draw one candidate slug. Uniqueness is not checked here."""
        return "".join(self._rng.choice(SLUG_ALPHABET) for _ in range(SLUG_LENGTH))

    @trace
    def allocate_slug(self, claim: Callable[[str], bool]) -> str:
        """Generate slugs until *claim* accepts one.

        *claim* is the storage collaborator's atomic check-and-reserve: it
        returns True when the slug was free and is now taken by the caller.

        Raises:
            SlugAllocationError: every attempt collided.
        """
        for attempt in range(1, self.max_slug_attempts + 1):
            slug = self.generate_slug()
            if claim(slug):
                if attempt > 1:
                    audit("slug.allocated_after_retry", logger=log, slug=slug, attempts=attempt)
                return slug
            log.debug("slug collision on attempt %d", attempt)

        audit("slug.exhausted", logger=log, attempts=self.max_slug_attempts)
        raise SlugAllocationError(self.max_slug_attempts)

    # ------------------------------------------------------------------
    # Edit tokens
    # ------------------------------------------------------------------

    def generate_edit_token(self) -> str:
        """32 random bytes as 64 lowercase hex characters."""
        return self._token_bytes(EDIT_TOKEN_BYTES).hex()

    @trace(redact=True)
    def hash_edit_token(self, token: str) -> str:
        """Salt and hash *token* for storage. A fresh salt is drawn on every call."""
        salt = self._token_bytes(SALT_BYTES).hex()
        return f"{salt}:{_digest(salt, token)}"

    @trace(redact=True)
    def verify_edit_token(self, token: str, stored: str) -> bool:
        """Check *token* against a stored ``salt:hash`` string.

        Fails closed: malformed input of any kind yields False, never an exception.
        """
        if not isinstance(token, str) or not token or not isinstance(stored, str):
            return False
        salt, sep, expected = stored.partition(":")
        if not sep or not _SALT_RE.match(salt) or not _HASH_RE.match(expected):
            return False
        actual = _digest(salt, token)
        return hmac.compare_digest(actual.encode("ascii"), expected.encode("ascii"))

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    @trace(redact=True)
    def issue(self, claim: Callable[[Credentials], bool]) -> Credentials:
        """Mint slug, raw edit token and stored hash for a new QR code.

        *claim* receives each candidate ``Credentials`` and returns True once it
        has persisted them under a free slug, so the record and its slug are
        reserved in one step.
        """
        token = self.generate_edit_token()
        stored_hash = self.hash_edit_token(token)
        issued: list[Credentials] = []

        def _claim(slug: str) -> bool:
            candidate = Credentials(slug=slug, edit_token=token, stored_hash=stored_hash)
            if claim(candidate):
                issued.append(candidate)
                return True
            return False

        self.allocate_slug(_claim)
        audit("credentials.issued", logger=log, slug=issued[0].slug)
        return issued[0]

    @trace(redact=True)
    def rotate(self) -> tuple[str, str]:
        """Return a fresh ``(edit_token, stored_hash)`` pair for an existing slug."""
        token = self.generate_edit_token()
        return token, self.hash_edit_token(token)
