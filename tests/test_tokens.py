"""
Unit Tests for TokenManager

Covers slug generation and allocation, edit-token generation, salted hashing
and fail-closed verification.
"""

import hashlib
import random
import re

import pytest

from qrforall.errors import SlugAllocationError
from qrforall.tokens import (
    DEFAULT_MAX_SLUG_ATTEMPTS,
    SLUG_ALPHABET,
    SLUG_LENGTH,
    Credentials,
    TokenManager,
)

SLUG_RE = re.compile(r"^[A-Za-z0-9]{9}$")
TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")


class _ConstantRng:
    """Always draws the first alphabet symbol, so every slug collides."""

    def choice(self, seq):
        return seq[0]


@pytest.fixture
def tokens():
    return TokenManager()


class TestSlugs:
    """Tests for slug generation and allocation."""

    def test_alphabet_when_inspected_then_62_symbols(self):
        """The slug alphabet is A-Z, a-z, 0-9."""
        assert len(SLUG_ALPHABET) == 62
        assert len(set(SLUG_ALPHABET)) == 62

    def test_generate_when_called_then_nine_alphanumerics(self, tokens):
        """Every slug is 9 characters drawn from the alphabet."""
        for _ in range(200):
            slug = tokens.generate_slug()
            assert len(slug) == SLUG_LENGTH
            assert SLUG_RE.match(slug)

    def test_generate_when_seeded_rng_then_reproducible(self):
        """An injected RNG makes slugs deterministic."""
        a = TokenManager(rng=random.Random(7)).generate_slug()
        b = TokenManager(rng=random.Random(7)).generate_slug()
        assert a == b

    def test_allocate_when_populated_set_then_all_unique(self, tokens):
        """10,000 allocations against a growing set never return a taken slug."""
        taken = set()

        def claim(slug):
            if slug in taken:
                return False
            taken.add(slug)
            return True

        for _ in range(10_000):
            tokens.allocate_slug(claim)
        assert len(taken) == 10_000

    def test_allocate_when_first_attempts_collide_then_retries(self, tokens):
        """Collisions are retried until the claim succeeds."""
        attempts = []

        def claim(slug):
            attempts.append(slug)
            return len(attempts) == 3

        slug = tokens.allocate_slug(claim)
        assert slug == attempts[-1]
        assert len(attempts) == 3

    def test_allocate_when_always_colliding_then_raises_after_max_attempts(self):
        """Exhausted retries escalate to SlugAllocationError."""
        tm = TokenManager(rng=_ConstantRng(), max_slug_attempts=5)
        calls = []

        with pytest.raises(SlugAllocationError, match="after 5 attempts"):
            tm.allocate_slug(lambda slug: calls.append(slug) or False)
        assert len(calls) == 5

    def test_default_attempts_when_not_given_then_ten(self, tokens):
        """The retry bound defaults to 10."""
        assert tokens.max_slug_attempts == DEFAULT_MAX_SLUG_ATTEMPTS == 10

    def test_init_when_zero_attempts_then_raises_error(self):
        """A retry bound below one is a configuration error."""
        with pytest.raises(ValueError, match="max_slug_attempts"):
            TokenManager(max_slug_attempts=0)


class TestEditTokens:
    """Tests for edit-token generation, hashing and verification."""

    def test_generate_when_called_then_64_lowercase_hex(self, tokens):
        """Tokens are 32 bytes rendered as 64 hex characters."""
        token = tokens.generate_edit_token()
        assert TOKEN_RE.match(token)

    def test_generate_when_called_twice_then_differs(self, tokens):
        """Consecutive tokens are independent."""
        assert tokens.generate_edit_token() != tokens.generate_edit_token()

    def test_hash_when_called_then_salt_colon_digest(self, tokens):
        """Stored form is 32 hex salt, a colon and a 64 hex SHA-256."""
        stored = tokens.hash_edit_token(tokens.generate_edit_token())
        salt, digest = stored.split(":")
        assert re.fullmatch(r"[0-9a-f]{32}", salt)
        assert re.fullmatch(r"[0-9a-f]{64}", digest)

    def test_hash_when_fixed_entropy_then_sha256_of_salt_and_token(self):
        """The digest is SHA-256 over the salt hex followed by the token."""
        tm = TokenManager(token_bytes=lambda n: bytes(n))
        token = tm.generate_edit_token()
        assert token == "00" * 32
        salt = "00" * 16
        expected = hashlib.sha256((salt + token).encode()).hexdigest()
        assert tm.hash_edit_token(token) == f"{salt}:{expected}"

    def test_hash_when_same_token_twice_then_different_stored_strings(self, tokens):
        """A fresh salt is drawn on every call."""
        token = tokens.generate_edit_token()
        first = tokens.hash_edit_token(token)
        second = tokens.hash_edit_token(token)
        assert first != second
        assert tokens.verify_edit_token(token, first)
        assert tokens.verify_edit_token(token, second)

    def test_verify_when_token_matches_then_true(self, tokens):
        """The original token verifies against its stored hash."""
        token = tokens.generate_edit_token()
        assert tokens.verify_edit_token(token, tokens.hash_edit_token(token)) is True

    def test_verify_when_single_bit_flipped_then_false(self, tokens):
        """Changing one bit of the token breaks verification."""
        token = tokens.generate_edit_token()
        stored = tokens.hash_edit_token(token)
        flipped = format(int(token[0], 16) ^ 1, "x") + token[1:]
        assert flipped != token
        assert tokens.verify_edit_token(flipped, stored) is False

    def test_verify_when_stored_digest_tampered_then_false(self, tokens):
        """Tampering with the stored digest breaks verification."""
        token = tokens.generate_edit_token()
        salt, digest = tokens.hash_edit_token(token).split(":")
        tampered = digest[:-1] + ("0" if digest[-1] != "0" else "1")
        assert tokens.verify_edit_token(token, f"{salt}:{tampered}") is False

    @pytest.mark.parametrize("stored", [
        "",
        "no-colon-here",
        ":",
        "abc:def",
        "zz" * 16 + ":" + "0" * 64,
        "0" * 32 + ":" + "0" * 63,
        "0" * 32 + ":" + "0" * 64 + ":extra",
        None,
        12345,
    ])
    def test_verify_when_stored_malformed_then_false(self, tokens, stored):
        """Malformed stored values fail closed instead of raising."""
        assert tokens.verify_edit_token(tokens.generate_edit_token(), stored) is False

    @pytest.mark.parametrize("token", ["", None, 42])
    def test_verify_when_token_missing_or_wrong_type_then_false(self, tokens, token):
        """Missing or non-string tokens fail closed."""
        stored = tokens.hash_edit_token(tokens.generate_edit_token())
        assert tokens.verify_edit_token(token, stored) is False


class TestIssue:
    """Tests for issue() and rotate()."""

    def test_issue_when_claim_accepts_then_consistent_credentials(self, tokens):
        """The issued hash verifies the issued token, and the slug is the claimed one."""
        seen = []

        def claim(creds):
            seen.append(creds)
            return True

        creds = tokens.issue(claim)
        assert isinstance(creds, Credentials)
        assert seen == [creds]
        assert SLUG_RE.match(creds.slug)
        assert tokens.verify_edit_token(creds.edit_token, creds.stored_hash)

    def test_issue_when_collisions_then_token_kept_across_retries(self, tokens):
        """Retries change the slug only; the token and hash stay the same."""
        seen = []

        def claim(creds):
            seen.append(creds)
            return len(seen) == 2

        creds = tokens.issue(claim)
        assert creds is seen[-1]
        assert seen[0].edit_token == seen[1].edit_token
        assert seen[0].stored_hash == seen[1].stored_hash

    def test_issue_when_always_colliding_then_raises(self):
        """Issuance surfaces slug exhaustion."""
        tm = TokenManager(rng=_ConstantRng(), max_slug_attempts=3)
        with pytest.raises(SlugAllocationError):
            tm.issue(lambda creds: False)

    def test_repr_when_printed_then_secrets_masked(self, tokens):
        """Credentials never print their token or hash."""
        creds = tokens.issue(lambda c: True)
        text = repr(creds)
        assert creds.edit_token not in text
        assert creds.stored_hash not in text
        assert creds.slug in text

    def test_rotate_when_called_then_new_pair_verifies(self, tokens):
        """Rotation returns a fresh token with its matching hash."""
        old = tokens.generate_edit_token()
        new, stored = tokens.rotate()
        assert new != old
        assert tokens.verify_edit_token(new, stored)
        assert not tokens.verify_edit_token(old, stored)
