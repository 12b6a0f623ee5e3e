import pytest

from qr_code_issuer.ledger import Ledger


@pytest.fixture
def ledger(tmp_path):
    """A fresh on-disk ledger, closed after the test."""
    with Ledger.open(tmp_path / "codes.db") as led:
        yield led
