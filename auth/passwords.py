"""
auth/passwords.py -- Password hashing, policy enforcement, and generation.

Security design decisions:
  Hashing: bcrypt used directly (no passlib wrapper) at cost factor 12. The
       salt and cost are embedded in the hash string, so verify() needs no
       extra state and the cost can be raised later without a migration.

  Policy: validate_policy() collects every violated rule before raising so
       callers can show all problems at once. Inputs longer than 72 UTF-8
       bytes are rejected because bcrypt ignores (4.x) or refuses (5.x)
       anything past that point.

  Generation: generate() draws from secrets.SystemRandom for both character
       selection and the final shuffle. Generated passwords are real account
       credentials (identity-provider sign-ups get one), so a general-purpose
       PRNG is not acceptable here.

  Timing: dummy_hash is computed once per hasher so login can run bcrypt even
       when the email is unknown [C1].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from dataclasses import dataclass
from functools import cached_property

import bcrypt

from auth.errors import PolicyViolationError
from core.config import Settings

logger = logging.getLogger("tradesauth.auth.passwords")

BCRYPT_ROUNDS = 12
BCRYPT_MAX_BYTES = 72

SPECIAL_CHARS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"
# Subset used when generating: avoids quoting headaches if the value is ever
# pasted into a shell or a config file.
_GENERATED_SPECIALS = "!@#$%^&*"

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"\d")
_SPECIAL_RE = re.compile("[" + re.escape(SPECIAL_CHARS) + "]")


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordPolicy:
        return cls(
            min_length=settings.password_min_length,
            require_uppercase=settings.password_require_uppercase,
            require_lowercase=settings.password_require_lowercase,
            require_numbers=settings.password_require_numbers,
            require_special=settings.password_require_special,
        )

    def required_classes(self) -> list[str]:
        """Alphabets the policy requires at least one character from."""
        classes = []
        if self.require_lowercase:
            classes.append(string.ascii_lowercase)
        if self.require_uppercase:
            classes.append(string.ascii_uppercase)
        if self.require_numbers:
            classes.append(string.digits)
        if self.require_special:
            classes.append(_GENERATED_SPECIALS)
        return classes


class PasswordHasher:
    """Credential hasher bound to one password policy.

    Usage:
        hasher = PasswordHasher(PasswordPolicy.from_settings(get_settings()))
        hashed = hasher.hash("Secr3t!23")
        hasher.verify("Secr3t!23", hashed)  # True
    """

    def __init__(self, policy: PasswordPolicy | None = None, rounds: int = BCRYPT_ROUNDS) -> None:
        self.policy = policy or PasswordPolicy()
        self.rounds = rounds
        self._random = secrets.SystemRandom()

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordHasher:
        return cls(PasswordPolicy.from_settings(settings))

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def validate_policy(self, plain: str) -> None:
        """Raise PolicyViolationError listing every rule the password breaks."""
        policy = self.policy
        violations: list[str] = []
        if len(plain) < policy.min_length:
            violations.append(f"Password must be at least {policy.min_length} characters long")
        if len(plain.encode("utf-8")) > BCRYPT_MAX_BYTES:
            violations.append(f"Password must be at most {BCRYPT_MAX_BYTES} bytes long")
        if policy.require_uppercase and not _UPPER_RE.search(plain):
            violations.append("Password must contain at least one uppercase letter")
        if policy.require_lowercase and not _LOWER_RE.search(plain):
            violations.append("Password must contain at least one lowercase letter")
        if policy.require_numbers and not _DIGIT_RE.search(plain):
            violations.append("Password must contain at least one number")
        if policy.require_special and not _SPECIAL_RE.search(plain):
            violations.append("Password must contain at least one special character")
        if violations:
            raise PolicyViolationError(violations)

    # ------------------------------------------------------------------
    # Hash / verify
    # ------------------------------------------------------------------

    def hash(self, plain: str) -> str:
        """Validate against the policy, then return a bcrypt hash."""
        self.validate_policy(plain)
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed hash, or an over-long input under bcrypt 5.x.
            return False

    @cached_property
    def dummy_hash(self) -> str:
        """A hash no password matches, used to equalize login timing [C1]."""
        return bcrypt.hashpw(secrets.token_bytes(32).hex().encode(), bcrypt.gensalt(rounds=self.rounds)).decode()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(self, length: int = 16) -> str:
        """Return a random password that satisfies the policy.

        One character is drawn from each required class, the rest from the
        union of all classes, and the result is shuffled. length is raised
        when the policy needs more characters than requested and capped at
        bcrypt's 72-byte limit.
        """
        classes = self.policy.required_classes()
        alphabet = string.ascii_letters + string.digits + _GENERATED_SPECIALS
        length = min(max(length, self.policy.min_length, len(classes)), BCRYPT_MAX_BYTES)
        chars = [self._random.choice(cls) for cls in classes]
        chars.extend(self._random.choice(alphabet) for _ in range(length - len(chars)))
        self._random.shuffle(chars)
        return "".join(chars)
