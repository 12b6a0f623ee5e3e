"""Random code generation with collision resolution against the ledger."""

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Iterator

from qr_code_issuer import DEFAULT_ALPHABET, DEFAULT_LENGTH
from qr_code_issuer.errors import (
    AlreadyRecordedError,
    CollisionError,
    ExhaustedSpaceError,
    RandomSourceError,
)
from qr_code_issuer.ledger import Ledger

logger = logging.getLogger(__name__)

# Fill ratio above which a warning is logged after a collision.
WARN_FILL_RATIO = 0.5


@dataclass(frozen=True)
class Code:
    """A committed code and its issuance time (Unix seconds)."""

    value: str
    created_at: int

    def __str__(self) -> str:
        return self.value


@dataclass
class RetryPolicy:
    """Limits applied when candidates keep colliding.

    Attributes:
        max_attempts: Maximum number of draws per issuance. None means unbounded,
            which is safe as long as the code space is large compared to the ledger.
        max_fill_ratio: Give up once this share of the code space is already taken.
            Only checked after a collision. None disables the check.
    """

    max_attempts: int | None = None
    max_fill_ratio: float | None = 1.0


def normalize_code(raw: str) -> str:
    """Canonical form used for every ledger operation."""
    return raw.strip().upper()


def normalize_alphabet(alphabet: str) -> str:
    """Uppercase ``alphabet`` and drop repeated characters, keeping their order.

    Raises:
        ValueError: If the alphabet is empty or contains whitespace.
    """
    normalized = "".join(dict.fromkeys(alphabet.upper()))
    if not normalized:
        raise ValueError("Alphabet cannot be empty.")
    if any(ch.isspace() for ch in normalized):
        raise ValueError("Alphabet cannot contain whitespace.")
    return normalized


def code_space_size(length: int, alphabet: str) -> int:
    return len(alphabet) ** length


def collision_probability(existing: int, space: int) -> float:
    """Probability that one uniform draw hits one of ``existing`` taken codes."""
    if space <= 0:
        return 1.0
    return min(existing / space, 1.0)


def draw_candidate(length: int, alphabet: str) -> str:
    """Draw ``length`` independent uniform characters from ``alphabet``.

    Uses the operating system CSPRNG through :mod:`secrets`.

    Raises:
        ValueError: If ``length`` is not positive or ``alphabet`` is empty.
        RandomSourceError: If the entropy source is unavailable.
    """
    if length < 1:
        raise ValueError(f"Code length must be positive, got {length}.")
    if not alphabet:
        raise ValueError("Alphabet cannot be empty.")
    try:
        return "".join(secrets.choice(alphabet) for _ in range(length))
    except (OSError, NotImplementedError) as e:
        raise RandomSourceError(f"Entropy source unavailable: {e}") from e


class Issuer:
    """Issues codes that are unique in a :class:`Ledger`.

    The ledger is owned by the caller and passed in explicitly. ``draw`` and
    ``clock`` can be replaced, mostly for tests.
    """

    def __init__(
        self,
        ledger: Ledger,
        *,
        length: int = DEFAULT_LENGTH,
        alphabet: str = DEFAULT_ALPHABET,
        policy: RetryPolicy | None = None,
        draw: Callable[[int, str], str] = draw_candidate,
        clock: Callable[[], float] = time.time,
    ):
        if length < 1:
            raise ValueError(f"Code length must be positive, got {length}.")
        self.ledger = ledger
        self.length = length
        self.alphabet = normalize_alphabet(alphabet)
        self.policy = policy or RetryPolicy()
        self._draw = draw
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def draw_candidate(self, length: int | None = None, alphabet: str | None = None) -> str:
        if length is None:
            length = self.length
        if alphabet is None:
            alphabet = self.alphabet
        return self._draw(length, alphabet)

    def issue_unique(self, length: int | None = None, alphabet: str | None = None) -> Code:
        """Draw candidates until one commits to the ledger.

        Collisions are retried with a fresh draw. Any other error propagates
        immediately without retrying.

        Raises:
            ExhaustedSpaceError: If a :class:`RetryPolicy` ceiling is hit.
            StorageError: If the ledger fails for a reason other than a collision.
            RandomSourceError: If the entropy source is unavailable.
        """
        if length is None:
            length = self.length
        alphabet = self.alphabet if alphabet is None else normalize_alphabet(alphabet)
        max_attempts = self.policy.max_attempts

        attempt = 0
        while True:
            attempt += 1
            candidate = self.draw_candidate(length, alphabet).upper()
            created_at = self._now()
            try:
                self.ledger.commit(candidate, created_at)
            except CollisionError:
                logger.debug("Collision on %s (attempt %d), drawing again", candidate, attempt)
                if max_attempts is not None and attempt >= max_attempts:
                    raise ExhaustedSpaceError(
                        f"No unique code after {attempt} attempts "
                        f"(length {length}, alphabet of {len(alphabet)})."
                    )
                self._check_fill_ratio(length, alphabet)
                continue

            logger.info("Issued %s after %d attempt(s)", candidate, attempt)
            return Code(candidate, created_at)

    def _check_fill_ratio(self, length: int, alphabet: str) -> None:
        max_fill_ratio = self.policy.max_fill_ratio
        if max_fill_ratio is None:
            return

        space = code_space_size(length, alphabet)
        taken = self.ledger.count(length=length, alphabet=alphabet)
        ratio = collision_probability(taken, space)

        if ratio >= max_fill_ratio:
            raise ExhaustedSpaceError(
                f"Code space is {ratio:.1%} full ({taken} of {space} codes taken); "
                f"ceiling is {max_fill_ratio:.1%}."
            )
        if ratio >= WARN_FILL_RATIO:
            logger.warning(
                "Code space is %.1f%% full (%d of %d); consider a longer code or larger alphabet",
                ratio * 100, taken, space,
            )

    def issue_batch(
        self,
        count: int,
        length: int | None = None,
        alphabet: str | None = None,
    ) -> Iterator[Code]:
        """Lazily issue ``count`` unique codes, one at a time.

        A fatal error stops the batch; codes already yielded stay committed.
        """
        if count < 0:
            raise ValueError(f"Batch size cannot be negative, got {count}.")
        for _ in range(count):
            yield self.issue_unique(length, alphabet)

    def record_used(self, raw_code: str) -> Code:
        """Record an externally known code in the ledger.

        Raises:
            AlreadyRecordedError: If the ledger already holds the code.
            ValueError: If the code is blank.
        """
        code = normalize_code(raw_code)
        if not code:
            raise ValueError("Code cannot be empty.")
        created_at = self._now()
        try:
            self.ledger.commit(code, created_at)
        except CollisionError as e:
            raise AlreadyRecordedError(code) from e
        logger.info("Recorded used code %s", code)
        return Code(code, created_at)
