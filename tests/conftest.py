import pytest

from gomu.chain import Wallet

from helpers import make_wallet


@pytest.fixture
def wallet() -> Wallet:
    return make_wallet()
