"""
Tests for code drawing, collision retry and manual code recording.
"""
import itertools
import secrets
import time

import pytest

from qr_code_issuer import DEFAULT_ALPHABET, DEFAULT_LENGTH
from qr_code_issuer.errors import (
    AlreadyRecordedError,
    CollisionError,
    ExhaustedSpaceError,
    RandomSourceError,
    StorageError,
)
from qr_code_issuer.issuer import (
    Code,
    Issuer,
    RetryPolicy,
    code_space_size,
    collision_probability,
    draw_candidate,
    normalize_alphabet,
    normalize_code,
)
from qr_code_issuer.ledger import Ledger


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ScriptedDraw:
    """Returns pre-set candidates in order and counts calls."""

    def __init__(self, *candidates):
        self._candidates = iter(candidates)
        self.calls = 0

    def __call__(self, length, alphabet):
        self.calls += 1
        return next(self._candidates)


class FailingLedger:
    """Ledger stand-in whose commits fail with a generic I/O fault."""

    def __init__(self):
        self.commits = 0

    def commit(self, code, created_at):
        self.commits += 1
        raise StorageError("disk I/O error")


class FlakyLedger:
    """Delegates to a real ledger, then fails every commit after ``ok`` of them."""

    def __init__(self, inner, ok):
        self.inner = inner
        self.ok = ok

    def commit(self, code, created_at):
        if self.ok == 0:
            raise StorageError("disk full")
        self.ok -= 1
        self.inner.commit(code, created_at)

    def count(self, length=None, alphabet=None):
        return self.inner.count(length, alphabet)


# ---------------------------------------------------------------------------
# draw_candidate
# ---------------------------------------------------------------------------

def test_draw_candidate_respects_alphabet_and_length():
    for _ in range(200):
        code = draw_candidate(10, "AB")
        assert len(code) == 10
        assert set(code) <= {"A", "B"}


def test_draw_candidate_default_space():
    code = draw_candidate(DEFAULT_LENGTH, DEFAULT_ALPHABET)
    assert len(code) == 10
    assert set(code) <= set(DEFAULT_ALPHABET)


@pytest.mark.parametrize("length,alphabet", [(0, "AB"), (-1, "AB"), (5, "")])
def test_draw_candidate_rejects_bad_arguments(length, alphabet):
    with pytest.raises(ValueError):
        draw_candidate(length, alphabet)


def test_draw_candidate_entropy_failure(monkeypatch):
    def broken_choice(seq):
        raise OSError("getrandom failed")

    monkeypatch.setattr(secrets, "choice", broken_choice)
    with pytest.raises(RandomSourceError):
        draw_candidate(6, "ABC")


# ---------------------------------------------------------------------------
# Normalization and code-space helpers
# ---------------------------------------------------------------------------

def test_normalize_code():
    assert normalize_code("  abc123 \n") == "ABC123"


def test_normalize_alphabet_uppercases_and_dedupes():
    assert normalize_alphabet("abcABC12") == "ABC12"
    with pytest.raises(ValueError):
        normalize_alphabet("")


@pytest.mark.parametrize("alphabet", ["A B", "  ", "AB\t", "\nXY"])
def test_normalize_alphabet_rejects_whitespace(alphabet):
    with pytest.raises(ValueError):
        normalize_alphabet(alphabet)


def test_code_space_and_collision_probability():
    assert code_space_size(6, "ABCDEF") == 6 ** 6
    assert collision_probability(0, 100) == 0.0
    assert collision_probability(25, 100) == 0.25
    assert collision_probability(200, 100) == 1.0


# ---------------------------------------------------------------------------
# issue_unique
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("k", [0, 1, 3])
def test_collisions_retry_exactly_k_plus_one_draws(ledger, k):
    seeded = [f"TAKEN{i:05d}" for i in range(k)]
    for code in seeded:
        ledger.commit(code, 1)

    draw = ScriptedDraw(*seeded, "FRESHCODE1")
    issuer = Issuer(ledger, draw=draw)

    code = issuer.issue_unique()
    assert draw.calls == k + 1
    assert code.value == "FRESHCODE1"
    assert ledger.contains("FRESHCODE1")
    assert ledger.count() == k + 1


def test_storage_error_is_not_retried():
    draw = ScriptedDraw("AAAA", "BBBB")
    failing = FailingLedger()
    issuer = Issuer(failing, draw=draw)

    with pytest.raises(StorageError):
        issuer.issue_unique()
    assert draw.calls == 1
    assert failing.commits == 1


def test_random_source_error_propagates(ledger):
    def broken_draw(length, alphabet):
        raise RandomSourceError("no entropy")

    issuer = Issuer(ledger, draw=broken_draw)
    with pytest.raises(RandomSourceError):
        issuer.issue_unique()
    assert ledger.count() == 0


def test_issue_unique_uses_clock_for_timestamp(ledger):
    issuer = Issuer(ledger, draw=ScriptedDraw("CLOCKED"), clock=lambda: 1700000123.9)
    code = issuer.issue_unique()
    assert code == Code("CLOCKED", 1700000123)
    assert ledger.entries()[0].created_at == 1700000123


def test_lowercase_alphabet_yields_uppercase_codes(ledger):
    issuer = Issuer(ledger, length=8, alphabet="abcdef")
    code = issuer.issue_unique()
    assert set(code.value) <= set("ABCDEF")
    assert ledger.contains(code.value)


def test_max_attempts_ceiling(ledger):
    ledger.commit("SAME", 1)
    draw = ScriptedDraw(*itertools.repeat("SAME", 10))
    issuer = Issuer(ledger, draw=draw, policy=RetryPolicy(max_attempts=3))

    with pytest.raises(ExhaustedSpaceError):
        issuer.issue_unique()
    assert draw.calls == 3


def test_full_space_raises_instead_of_looping(ledger):
    issuer = Issuer(ledger, length=1, alphabet="A")
    assert issuer.issue_unique().value == "A"
    with pytest.raises(ExhaustedSpaceError):
        issuer.issue_unique()


def test_fill_ratio_ignores_codes_outside_the_space(ledger):
    # "ZZ" has the right length but is not drawable from "AB"
    ledger.commit("ZZ", 1)
    for code in ("AA", "AB", "BA"):
        ledger.commit(code, 1)

    draw = ScriptedDraw("AA", "BB")
    issuer = Issuer(ledger, length=2, alphabet="AB", draw=draw)
    assert issuer.issue_unique().value == "BB"
    assert draw.calls == 2


def test_fill_ratio_ceiling(ledger):
    ledger.commit("AA", 1)
    ledger.commit("AB", 1)
    issuer = Issuer(
        ledger,
        length=2,
        alphabet="AB",
        draw=ScriptedDraw("AA", "BB"),
        policy=RetryPolicy(max_fill_ratio=0.5),
    )
    with pytest.raises(ExhaustedSpaceError):
        issuer.issue_unique()


def test_uniqueness_across_ledger_handles(tmp_path):
    path = tmp_path / "shared.db"
    with Ledger.open(path) as first, Ledger.open(path) as second:
        issuers = [
            Issuer(first, length=3, alphabet="AB"),
            Issuer(second, length=3, alphabet="AB"),
        ]
        codes = [issuers[i % 2].issue_unique().value for i in range(8)]
        assert len(set(codes)) == 8

        with pytest.raises(ExhaustedSpaceError):
            issuers[0].issue_unique()


# ---------------------------------------------------------------------------
# issue_batch
# ---------------------------------------------------------------------------

def test_issue_batch_end_to_end(tmp_path):
    start = int(time.time())
    with Ledger.open(tmp_path / "test.db") as ledger:
        codes = list(Issuer(ledger).issue_batch(3, 6, "ABCDEF"))
        entries = ledger.entries()
    end = int(time.time())

    assert len(codes) == 3
    assert len({c.value for c in codes}) == 3
    assert {e.code for e in entries} == {c.value for c in codes}
    for entry in entries:
        assert len(entry.code) == 6
        assert set(entry.code) <= set("ABCDEF")
        assert start <= entry.created_at <= end


def test_issue_batch_is_lazy(ledger):
    batch = Issuer(ledger).issue_batch(2)
    assert ledger.count() == 0
    next(batch)
    assert ledger.count() == 1


def test_issue_batch_keeps_codes_before_fatal_error(ledger):
    issuer = Issuer(FlakyLedger(ledger, ok=2))
    produced = []
    with pytest.raises(StorageError):
        for code in issuer.issue_batch(5):
            produced.append(code)

    assert len(produced) == 2
    assert ledger.count() == 2


def test_issue_batch_zero_and_negative(ledger):
    issuer = Issuer(ledger)
    assert list(issuer.issue_batch(0)) == []
    with pytest.raises(ValueError):
        list(issuer.issue_batch(-1))


# ---------------------------------------------------------------------------
# record_used
# ---------------------------------------------------------------------------

def test_record_used_normalizes_and_detects_repeat(ledger):
    issuer = Issuer(ledger)
    code = issuer.record_used(" abc123 ")
    assert code.value == "ABC123"
    assert ledger.contains("ABC123")

    with pytest.raises(AlreadyRecordedError) as excinfo:
        issuer.record_used("ABC123")
    assert excinfo.value.code == "ABC123"
    assert not isinstance(excinfo.value, CollisionError)


def test_record_used_rejects_blank(ledger):
    with pytest.raises(ValueError):
        Issuer(ledger).record_used("   ")


def test_record_used_blocks_later_issuance(ledger):
    draw = ScriptedDraw("ABCDEF", "FEDCBA")
    issuer = Issuer(ledger, length=6, alphabet="ABCDEF", draw=draw)
    issuer.record_used("abcdef")
    assert issuer.issue_unique().value == "FEDCBA"
    assert draw.calls == 2


# ---------------------------------------------------------------------------
# Candidate shape
# ---------------------------------------------------------------------------

def test_whitespace_alphabet_rejected_by_issuer(ledger):
    with pytest.raises(ValueError):
        Issuer(ledger, length=3, alphabet="A B")
    with pytest.raises(ValueError):
        Issuer(ledger).issue_unique(3, "  ")
    assert ledger.count() == 0


def test_issued_candidate_is_only_uppercased(ledger):
    # Issued codes keep their full length; trimming is for manual codes only
    issuer = Issuer(ledger, length=3, alphabet="AB", draw=ScriptedDraw(" ab"))
    code = issuer.issue_unique()
    assert code.value == " AB"
    assert len(code.value) == 3


def test_explicit_zero_length_is_not_replaced_by_default(ledger):
    issuer = Issuer(ledger)
    with pytest.raises(ValueError):
        issuer.issue_unique(length=0)
    with pytest.raises(ValueError):
        issuer.draw_candidate(length=0)
    assert ledger.count() == 0
