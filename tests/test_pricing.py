"""
Tests for pricing.py estimators.
"""
import pytest
from solders.pubkey import Pubkey

from volume_bundler.pricing import ConstantProductEstimator, apply_slippage, synthetic_estimate


class TestEstimators:

    def test_synthetic_estimate_deterministic_and_monotonic(self, token_mint):
        small = synthetic_estimate(1_000_000_000, token_mint)

        assert small == synthetic_estimate(1_000_000_000, token_mint)
        assert 1_000 <= small <= 1_000_000
        assert synthetic_estimate(2_000_000_000, token_mint) == 2 * small

    def test_synthetic_rate_varies_by_mint(self):
        rates = {synthetic_estimate(1_000_000_000, Pubkey.new_unique()) for _ in range(5)}
        assert len(rates) > 1

    def test_constant_product(self):
        estimator = ConstantProductEstimator(reserve_in=1_000_000, reserve_out=2_000_000, fee_bps=0)

        # 2_000_000 * 1_000 / (1_000_000 + 1_000)
        assert estimator(1_000, Pubkey.new_unique()) == 1_998

    def test_constant_product_fee_reduces_output(self):
        mint = Pubkey.new_unique()
        no_fee = ConstantProductEstimator(1_000_000, 1_000_000, fee_bps=0)
        with_fee = ConstantProductEstimator(1_000_000, 1_000_000, fee_bps=25)

        assert with_fee(10_000, mint) < no_fee(10_000, mint)
        assert with_fee(0, mint) == 0

    def test_constant_product_rejects_empty_reserves(self):
        with pytest.raises(ValueError):
            ConstantProductEstimator(0, 1)

    def test_apply_slippage(self):
        assert apply_slippage(10_000, 500) == 9_500
        assert apply_slippage(10_000, 0) == 10_000
        assert apply_slippage(1, 500) == 0
