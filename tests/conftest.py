"""
Pytest configuration and fixtures for BTC staking tests.
"""

import random
from typing import Dict, Iterable, List, Optional

import pytest

from crypto.keys import CURVE_ORDER, PrivateKey
from crypto.signatures import SchnorrSignature
from scripts.transaction import (
    DEFAULT_SEQUENCE,
    OutPoint,
    Transaction,
    TxOut,
    build_spend_transaction,
)
from scripts.validator import TapscriptInterpreter, ValidationResult
from staking.networks import REGTEST
from staking.output import StakingOutputDescriptor, StakingPath, build_staking_info
from staking.signing import sign_tx_with_one_script_spend_input_from_tap_leaf
from staking.witness import order_signatures


FUNDING_OUTPOINT = OutPoint(txid="6b" * 32, index=0)
SPEND_FEE = 1000


def random_private_key(rng: random.Random) -> PrivateKey:
    """Deterministic private key from a seeded random source."""
    return PrivateKey.from_int(rng.randrange(1, CURVE_ORDER))


class StakingScenario:
    """A staking output with all participants' private keys, for spend tests."""

    def __init__(
        self,
        rng: random.Random,
        num_validators: int = 2,
        num_covenant: int = 5,
        covenant_threshold: int = 3,
        staking_time: int = 100,
        staking_amount: int = 1_000_000,
    ):
        self.staker = random_private_key(rng)
        self.validators = [random_private_key(rng) for _ in range(num_validators)]
        self.covenant = [random_private_key(rng) for _ in range(num_covenant)]
        self.staking_time = staking_time
        self.funding_outpoint = FUNDING_OUTPOINT

        self.descriptor: StakingOutputDescriptor = build_staking_info(
            staker_key=self.staker.public_key(),
            validator_keys=[key.public_key() for key in self.validators],
            covenant_keys=[key.public_key() for key in self.covenant],
            covenant_threshold=covenant_threshold,
            staking_time=staking_time,
            staking_amount=staking_amount,
            network=REGTEST,
        )

    def spend_tx(self, sequence: int = DEFAULT_SEQUENCE, version: int = 2) -> Transaction:
        destination = TxOut(
            value=self.descriptor.value - SPEND_FEE,
            script_pubkey=self.descriptor.pk_script,
        )
        return build_spend_transaction(self.funding_outpoint, [destination], sequence=sequence, version=version)

    def sign(self, tx: Transaction, key: PrivateKey, path: StakingPath) -> SchnorrSignature:
        return sign_tx_with_one_script_spend_input_from_tap_leaf(
            tx,
            self.descriptor.staking_output,
            key,
            self.descriptor.spend_info(path).leaf,
            funding_outpoint=self.funding_outpoint,
        )

    def role_signatures(
        self,
        tx: Transaction,
        role_keys: List[PrivateKey],
        signers: Iterable[PrivateKey],
        path: StakingPath
    ) -> List[Optional[SchnorrSignature]]:
        """Signature slots in script key order, filled for ``signers`` only."""
        by_key: Dict[bytes, SchnorrSignature] = {
            key.x_only: self.sign(tx, key, path) for key in signers
        }
        return order_signatures([key.x_only for key in role_keys], by_key)

    def verify(self, tx: Transaction, witness: List[bytes]) -> ValidationResult:
        signed = tx.with_witness(0, witness)
        return TapscriptInterpreter().verify_input(
            signed, 0, self.descriptor.output_fetcher(self.funding_outpoint)
        )


@pytest.fixture
def rng():
    """Seeded random source so generated keys are reproducible."""
    return random.Random(1337)


@pytest.fixture
def key_factory(rng):
    """Create deterministic private keys."""
    def factory(count: int = 1) -> List[PrivateKey]:
        return [random_private_key(rng) for _ in range(count)]
    return factory


@pytest.fixture
def make_scenario(rng):
    """Build staking scenarios with custom committee sizes."""
    def factory(**kwargs) -> StakingScenario:
        return StakingScenario(rng, **kwargs)
    return factory


@pytest.fixture
def scenario(make_scenario):
    """Default scenario: 2 validators, 5 covenant keys, threshold 3, 100 blocks."""
    return make_scenario()


# Test markers for different test categories
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# Pytest collection hooks
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test paths."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

        if "slow" in item.name or "large" in item.name:
            item.add_marker(pytest.mark.slow)
