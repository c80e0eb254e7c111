"""
Swap output estimators.

An estimator is any callable `(amount_in, token_mint) -> estimated_out`
that is deterministic and non-decreasing in amount_in. The assembler
takes one as a dependency, so a live reserve-based estimator can replace
the synthetic one without touching the instruction builders.
"""
import hashlib
from dataclasses import dataclass
from typing import Callable

from solders.pubkey import Pubkey

PriceEstimator = Callable[[int, Pubkey], int]


def synthetic_estimate(amount_in: int, token_mint: Pubkey) -> int:
    """
    Placeholder estimator for dry runs and tests.

    Rate is a fixed per-mint value (1,000 - 1,000,000 token units per SOL)
    derived from the mint's hash, so the output is linear in amount_in.
    """
    digest = hashlib.sha256(bytes(token_mint)).digest()
    tokens_per_sol = 1_000 + int.from_bytes(digest[:4], 'little') % 999_001
    return amount_in * tokens_per_sol // 1_000_000_000


@dataclass(frozen=True)
class ConstantProductEstimator:
    """
    x * y = k output estimate from known reserves.

    Reserves are supplied by the caller (e.g. read from the pool vaults);
    the estimator itself never queries the chain.
    """
    reserve_in: int
    reserve_out: int
    fee_bps: int = 25

    def __post_init__(self):
        if self.reserve_in <= 0 or self.reserve_out <= 0:
            raise ValueError("Reserves must be positive")
        if not 0 <= self.fee_bps < 10_000:
            raise ValueError(f"fee_bps must be in [0, 10000), got {self.fee_bps}")

    def __call__(self, amount_in: int, token_mint: Pubkey) -> int:
        if amount_in <= 0:
            return 0
        amount_in_after_fee = amount_in * (10_000 - self.fee_bps)
        numerator = amount_in_after_fee * self.reserve_out
        denominator = self.reserve_in * 10_000 + amount_in_after_fee
        return numerator // denominator


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Minimum acceptable output for an estimate under a slippage tolerance."""
    return amount * (10_000 - slippage_bps) // 10_000
