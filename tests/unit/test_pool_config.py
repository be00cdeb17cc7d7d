"""
Unit tests for pool configuration.
"""

import pytest

from shieldpool.crypto.hashing import HashDomainParams
from shieldpool.errors import ConfigMismatchError
from shieldpool.pool.config import (
    DEFAULT_MAX_DEPOSIT,
    DEFAULT_MIN_WITHDRAW,
    PoolConfig,
    PoolParameters,
    parse_ether,
)


class TestPoolConfig:
    """Test PoolConfig."""

    def test_defaults(self):
        config = PoolConfig()
        assert config.tree_height == 23
        assert config.input_counts == (2, 16)
        assert config.output_count == 2
        assert config.min_withdraw == 5 * 10**16
        assert config.max_deposit == 10**18
        assert config.max_inputs == 16

    def test_input_count_for(self):
        config = PoolConfig()
        assert config.input_count_for(0) == 2
        assert config.input_count_for(2) == 2
        assert config.input_count_for(3) == 16
        assert config.input_count_for(16) == 16
        with pytest.raises(ValueError):
            config.input_count_for(17)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"tree_height": 0},
            {"tree_height": 33},
            {"input_counts": ()},
            {"input_counts": (16, 2)},
            {"input_counts": (0, 2)},
            {"output_count": 3},
            {"min_withdraw": -1},
            {"max_deposit": 0},
            {"max_deposit": 2**248},
            {"zero_value": -1},
        ],
    )
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            PoolConfig(**kwargs)

    def test_input_counts_normalized(self):
        assert PoolConfig(input_counts=[2, 16]).input_counts == (2, 16)

    def test_dict_round_trip(self):
        config = PoolConfig(tree_height=5, min_withdraw=1, max_deposit=100)
        restored = PoolConfig.from_dict(config.to_dict())
        assert restored == config

    def test_create_hasher(self):
        config = PoolConfig(hash_domain=HashDomainParams.seeded("x"))
        assert config.create_hasher().params.seed == "x"


class TestFromEnv:
    """Test environment configuration."""

    def test_from_env(self):
        config = PoolConfig.from_env(
            {
                "MERKLE_TREE_HEIGHT": "5",
                "MINIMUM_WITHDRAWAL_AMOUNT": "0.1",
                "MAXIMUM_DEPOSIT_AMOUNT": "2",
            }
        )
        assert config.tree_height == 5
        assert config.min_withdraw == 10**17
        assert config.max_deposit == 2 * 10**18

    def test_from_env_defaults(self):
        config = PoolConfig.from_env({})
        assert config.min_withdraw == DEFAULT_MIN_WITHDRAW
        assert config.max_deposit == DEFAULT_MAX_DEPOSIT

    def test_from_env_overrides(self):
        config = PoolConfig.from_env({"MERKLE_TREE_HEIGHT": "5"}, tree_height=6)
        assert config.tree_height == 6

    def test_parse_ether(self):
        assert parse_ether("1") == 10**18
        assert parse_ether(0.05) == 5 * 10**16


class TestCheckAgainst:
    """Test comparison with ledger parameters."""

    def test_matching(self):
        config = PoolConfig(tree_height=5)
        config.check_against(PoolParameters(tree_height=5, max_deposit=config.max_deposit))

    def test_unreported_values_are_ignored(self):
        PoolConfig().check_against(PoolParameters())

    def test_mismatch(self):
        """Test every disagreeing value is reported."""
        config = PoolConfig(tree_height=5)
        with pytest.raises(ConfigMismatchError) as exc_info:
            config.check_against(
                PoolParameters(tree_height=6, min_withdraw=1, input_counts=(2,))
            )
        mismatches = exc_info.value.mismatches
        assert set(mismatches) == {"tree_height", "min_withdraw", "input_counts"}
        assert mismatches["tree_height"] == (5, 6)

    def test_hash_domain_mismatch(self):
        with pytest.raises(ConfigMismatchError):
            PoolConfig().check_against(
                PoolParameters(hash_domain=HashDomainParams.seeded("other"))
            )

    def test_zero_node_checks_hasher(self):
        """Test the ledger's hash of two zero leaves must match the local domain."""
        config = PoolConfig()
        local = config.create_hasher().hash2(config.zero_value, config.zero_value)
        config.check_against(PoolParameters(zero_node=local))

        foreign = PoolConfig(hash_domain=HashDomainParams.seeded("other")).create_hasher()
        with pytest.raises(ConfigMismatchError) as exc_info:
            config.check_against(
                PoolParameters(zero_node=foreign.hash2(config.zero_value, config.zero_value))
            )
        assert set(exc_info.value.mismatches) == {"zero_node"}
