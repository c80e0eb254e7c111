"""
Pytest configuration and fixtures for volume bundler tests.
"""
import random

import pytest
from unittest.mock import AsyncMock
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from volume_bundler.builders import builder_registry
from volume_bundler.bundle_assembler import BundleAssembler
from volume_bundler.constants import NATIVE_MINT, TOKEN_PROGRAM_ID
from volume_bundler.models import (
    CpmmPoolDescriptor,
    CurvePoolDescriptor,
    CycleParameters,
    OrderBookPoolDescriptor,
)
from volume_bundler.pricing import synthetic_estimate
from volume_bundler.retry import RetryExecutor, RetryPolicy
from volume_bundler.token_program import TokenProgramResolver
from volume_bundler.venue_resolver import VenueResolver
from volume_bundler.wallet_manager import EphemeralWalletManager


async def _no_sleep(delay):
    return None


@pytest.fixture
def main_keypair():
    """Main (funding) wallet."""
    return Keypair()


@pytest.fixture
def token_mint():
    """Non-native token mint."""
    return Pubkey.new_unique()


@pytest.fixture
def market_id():
    """Pool / market id as passed on the command line."""
    return str(Pubkey.new_unique())


@pytest.fixture
def blockhash():
    return Hash.new_unique()


@pytest.fixture
def mock_solana_client(blockhash):
    """Create a mock SolanaClient: classic token mints, 100 SOL balance, fixed blockhash."""
    client = AsyncMock()
    client.get_account_owner.return_value = TOKEN_PROGRAM_ID
    client.get_latest_blockhash.return_value = (blockhash, 1_000)
    client.get_balance.return_value = 100_000_000_000
    return client


@pytest.fixture
def token_programs(mock_solana_client):
    """Fresh resolver (empty cache) per test."""
    return TokenProgramResolver(mock_solana_client)


@pytest.fixture
def wallet_manager(tmp_path):
    return EphemeralWalletManager(tmp_path / "keypairs")


@pytest.fixture
def fast_retry():
    """RetryExecutor that never actually sleeps."""
    return RetryExecutor(RetryPolicy(base_delay=0.01, max_delay=0.01), rng=random.Random(1), sleep=_no_sleep)


@pytest.fixture
def cpmm_descriptor(market_id, token_mint):
    """CPMM pool with the native mint in slot a."""
    return CpmmPoolDescriptor(
        pool_id=Pubkey.from_string(market_id),
        config_id=Pubkey.new_unique(),
        mint_a=NATIVE_MINT,
        mint_b=token_mint,
        vault_a=Pubkey.new_unique(),
        vault_b=Pubkey.new_unique(),
        observation_id=Pubkey.new_unique(),
    )


@pytest.fixture
def curve_descriptor(token_mint):
    return CurvePoolDescriptor(
        address=Pubkey.new_unique(),
        authority=Pubkey.new_unique(),
        base_vault=Pubkey.new_unique(),
        quote_vault=Pubkey.new_unique(),
        base_mint=token_mint,
        fee_account=Pubkey.new_unique(),
    )


@pytest.fixture
def orderbook_descriptor(market_id, token_mint):
    return OrderBookPoolDescriptor(
        amm_id=Pubkey.new_unique(),
        authority=Pubkey.new_unique(),
        open_orders=Pubkey.new_unique(),
        target_orders=Pubkey.new_unique(),
        base_mint=token_mint,
        quote_mint=NATIVE_MINT,
        base_vault=Pubkey.new_unique(),
        quote_vault=Pubkey.new_unique(),
        market_id=Pubkey.from_string(market_id),
        bids=Pubkey.new_unique(),
        asks=Pubkey.new_unique(),
        event_queue=Pubkey.new_unique(),
        market_base_vault=Pubkey.new_unique(),
        market_quote_vault=Pubkey.new_unique(),
        market_authority=Pubkey.new_unique(),
    )


@pytest.fixture
def mock_pool_provider(cpmm_descriptor, curve_descriptor, orderbook_descriptor):
    """Provider that knows one pool of each kind."""
    provider = AsyncMock()
    provider.fetch_cpmm_pool.return_value = cpmm_descriptor
    provider.fetch_curve_pool.return_value = curve_descriptor
    provider.fetch_orderbook_pool.return_value = orderbook_descriptor
    return provider


@pytest.fixture
def cycle_params(market_id):
    return CycleParameters(
        market_id=market_id,
        min_amount=10_000_000,
        max_amount=20_000_000,
        wallet_count=2,
        delay_seconds=0,
        tip_lamports=10_000,
    )


@pytest.fixture
def make_assembler(mock_solana_client, wallet_manager, token_programs, fast_retry):
    """Factory for a BundleAssembler over a given pool provider."""
    def _make(provider, cache=True, **kwargs):
        return BundleAssembler(
            mock_solana_client,
            wallet_manager,
            VenueResolver(provider, cache=cache),
            token_programs,
            builder_registry(token_programs),
            synthetic_estimate,
            retry=fast_retry,
            rng=random.Random(7),
            **kwargs
        )
    return _make
