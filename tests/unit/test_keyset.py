"""
Tests for Staking Key Sets and Lock Parameters
"""

import pytest

from staking.exceptions import (
    ConfigurationError,
    EmptyKeySetError,
    InvalidLockTimeError,
    InvalidStakingAmountError,
    InvalidThresholdError,
    KeySerializationError,
    UnknownNetworkError,
)
from staking.keyset import (
    MAX_STAKING_AMOUNT,
    KeySet,
    LockParams,
    parse_btc_amount,
    parse_lock_time,
    sort_keys,
)
from staking.networks import MAINNET, REGTEST, SIGNET, TESTNET, get_network


class TestSortKeys:
    """Test the canonical key order."""

    def test_descending_lexicographic(self):
        keys = [b'\x01' * 32, b'\xff' * 32, b'\x80' + b'\x00' * 31]
        assert sort_keys(keys) == [b'\xff' * 32, b'\x80' + b'\x00' * 31, b'\x01' * 32]

    def test_input_order_irrelevant(self, key_factory):
        keys = [key.x_only for key in key_factory(6)]
        assert sort_keys(keys) == sort_keys(list(reversed(keys)))

    def test_duplicates_kept(self):
        keys = [b'\x02' * 32, b'\x02' * 32, b'\x01' * 32]
        assert sort_keys(keys) == [b'\x02' * 32, b'\x02' * 32, b'\x01' * 32]


class TestKeySet:
    """Test key normalization and validation."""

    def test_build_accepts_mixed_encodings(self, key_factory):
        staker, val1, val2, cov = key_factory(4)
        key_set = KeySet.build(
            staker=staker.public_key(),
            validators=[val1.public_key().bytes, val2.x_only.hex()],
            covenant=[cov],
            covenant_threshold=1,
        )

        assert key_set.staker == staker.x_only
        assert key_set.validators == (val1.x_only, val2.x_only)
        assert key_set.covenant == (cov.x_only,)

    def test_sorted_views(self, key_factory):
        keys = key_factory(5)
        key_set = KeySet.build(keys[0], keys[1:3], keys[2:], 2)
        assert key_set.sorted_validators == sort_keys(key_set.validators)
        assert key_set.sorted_covenant == sort_keys(key_set.covenant)
        assert key_set.sorted_covenant[0] == max(key_set.covenant)

    def test_empty_validators(self, key_factory):
        staker, cov = key_factory(2)
        with pytest.raises(EmptyKeySetError) as exc_info:
            KeySet.build(staker, [], [cov], 1)
        assert exc_info.value.role == "validator"

    def test_empty_covenant(self, key_factory):
        staker, val = key_factory(2)
        with pytest.raises(EmptyKeySetError) as exc_info:
            KeySet.build(staker, [val], [], 1)
        assert exc_info.value.role == "covenant"

    @pytest.mark.parametrize("threshold", [0, 4, -1, True, 1.5])
    def test_invalid_threshold(self, key_factory, threshold):
        staker, val, *covenant = key_factory(5)
        with pytest.raises(InvalidThresholdError) as exc_info:
            KeySet.build(staker, [val], covenant, threshold)
        assert exc_info.value.key_count == 3
        assert exc_info.value.role == "covenant"

    def test_threshold_equal_to_key_count(self, key_factory):
        staker, val, *covenant = key_factory(5)
        assert KeySet.build(staker, [val], covenant, 3).covenant_threshold == 3

    def test_invalid_key_reports_index(self, key_factory):
        staker, val, cov = key_factory(3)
        with pytest.raises(KeySerializationError) as exc_info:
            KeySet.build(staker, [val], [cov, b'\x00' * 33], 1)
        assert exc_info.value.role == "covenant"
        assert exc_info.value.index == 1

    def test_invalid_staker(self, key_factory):
        val, cov = key_factory(2)
        with pytest.raises(KeySerializationError) as exc_info:
            KeySet.build("not hex", [val], [cov], 1)
        assert exc_info.value.role == "staker"
        assert exc_info.value.index is None

    def test_direct_constructor_rejects_off_curve_staker(self, key_factory):
        val, cov1, cov2 = (key.x_only for key in key_factory(3))
        with pytest.raises(KeySerializationError) as exc_info:
            KeySet(staker=b'\x00' * 32, validators=(val,), covenant=(cov1, cov2), covenant_threshold=1)
        assert exc_info.value.role == "staker"
        assert "secp256k1" in str(exc_info.value)

    def test_direct_constructor_rejects_x_above_field_prime(self, key_factory):
        staker, val, cov = (key.x_only for key in key_factory(3))
        with pytest.raises(KeySerializationError) as exc_info:
            KeySet(staker=staker, validators=(val,), covenant=(cov, b'\xff' * 32), covenant_threshold=1)
        assert exc_info.value.role == "covenant"
        assert exc_info.value.index == 1

    def test_direct_constructor_accepts_x_only_keys(self, key_factory):
        staker, val, cov = (key.x_only for key in key_factory(3))
        key_set = KeySet(staker=staker, validators=[val], covenant=[cov], covenant_threshold=1)
        assert key_set == KeySet.build(staker, [val], [cov], 1)

    def test_single_key_instead_of_list(self, key_factory):
        staker, val, cov = key_factory(3)
        with pytest.raises(KeySerializationError):
            KeySet.build(staker, val.x_only, [cov], 1)

    def test_duplicates_allowed(self, key_factory):
        staker, val, cov = key_factory(3)
        key_set = KeySet.build(staker, [val, val], [cov, cov], 2)
        assert len(key_set.covenant) == 2

    def test_errors_share_configuration_base(self, key_factory):
        staker, val = key_factory(2)
        with pytest.raises(ConfigurationError):
            KeySet.build(staker, [val], [], 1)


class TestLockParams:
    """Test staking amount and timelock validation."""

    def test_valid(self):
        params = LockParams(staking_amount=50_000, timelock_blocks=144, network="regtest")
        assert params.network is REGTEST

    def test_defaults_to_mainnet(self):
        assert LockParams(1, 1).network is MAINNET

    @pytest.mark.parametrize("blocks", [0, -1, 65536, True, "100"])
    def test_invalid_timelock(self, blocks):
        with pytest.raises(InvalidLockTimeError) as exc_info:
            LockParams(1000, blocks)
        assert exc_info.value.lock_time == blocks

    def test_timelock_bounds(self):
        assert LockParams(1000, 1).timelock_blocks == 1
        assert LockParams(1000, 65535).timelock_blocks == 65535

    @pytest.mark.parametrize("amount", [0, -5, MAX_STAKING_AMOUNT + 1, 1.0])
    def test_invalid_amount(self, amount):
        with pytest.raises(InvalidStakingAmountError):
            LockParams(amount, 10)

    def test_unknown_network(self):
        with pytest.raises(UnknownNetworkError, match="fakenet"):
            LockParams(1000, 10, network="fakenet")

    def test_from_strings(self):
        params = LockParams.from_strings(" 250000 ", "1000", "testnet")
        assert params == LockParams(250_000, 1000, TESTNET)


class TestParsing:
    """Test parsing of user-supplied decimal values."""

    @pytest.mark.parametrize("value,expected", [("1", 1), ("65535", 65535), ("+10", 10)])
    def test_parse_lock_time(self, value, expected):
        assert parse_lock_time(value) == expected

    @pytest.mark.parametrize("value,message", [
        ("abc", "Invalid staking time"),
        ("1.5", "Invalid staking time"),
        ("-3", "not a valid unsigned integer"),
        ("65536", "too large"),
        ("0", "at least 1 block"),
    ])
    def test_parse_lock_time_errors(self, value, message):
        with pytest.raises(InvalidLockTimeError, match=message):
            parse_lock_time(value)

    def test_parse_btc_amount(self):
        assert parse_btc_amount("100000") == 100_000

    @pytest.mark.parametrize("value,message", [
        ("0x10", "Invalid staking value"),
        ("-1", "negative"),
        (str(2**63), "64 bits"),
    ])
    def test_parse_btc_amount_errors(self, value, message):
        with pytest.raises(InvalidStakingAmountError, match=message):
            parse_btc_amount(value)


class TestNetworks:
    """Test network lookup."""

    def test_lookup_is_case_insensitive(self):
        assert get_network("SigNet") is SIGNET

    def test_params_pass_through(self):
        assert get_network(REGTEST) is REGTEST

    def test_hrps(self):
        assert (MAINNET.bech32_hrp, TESTNET.bech32_hrp, REGTEST.bech32_hrp) == ("bc", "tb", "bcrt")
