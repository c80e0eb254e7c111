"""
Tests for pool_data.py providers.
"""
import pytest
from solders.pubkey import Pubkey

from volume_bundler.constants import CPMM_AUTHORITY, NATIVE_MINT
from volume_bundler.models import CpmmPoolDescriptor, VenueKind
from volume_bundler.pool_data import (
    ConfigPoolDataProvider,
    PoolDataProvider,
    PoolNotFoundError,
    SyntheticPoolDataProvider,
)


class TestConfigPoolDataProvider:
    """Tests for descriptors read from config.json."""

    @pytest.fixture
    def pool_id(self):
        return Pubkey.new_unique()

    @pytest.fixture
    def cpmm_entry(self, token_mint):
        return {
            "config_id": str(Pubkey.new_unique()),
            "mint_a": str(token_mint),
            "mint_b": str(NATIVE_MINT),
            "vault_a": str(Pubkey.new_unique()),
            "vault_b": str(Pubkey.new_unique()),
            "observation_id": str(Pubkey.new_unique()),
            "fee_bps": "30",
        }

    @pytest.mark.asyncio
    async def test_cpmm_entry_keyed_by_pool_id(self, pool_id, cpmm_entry, token_mint):
        provider = ConfigPoolDataProvider({"constant_product_amm": {str(pool_id): cpmm_entry}})

        descriptor = await provider.fetch_cpmm_pool(pool_id)

        assert isinstance(descriptor, CpmmPoolDescriptor)
        assert descriptor.pool_id == pool_id
        assert descriptor.mint_b == NATIVE_MINT
        assert descriptor.token_mint == token_mint
        assert descriptor.fee_bps == 30
        assert descriptor.authority == CPMM_AUTHORITY
        assert descriptor.proxy_program is None

    @pytest.mark.asyncio
    async def test_curve_entry_keyed_by_base_mint(self, token_mint):
        entry = {
            "address": str(Pubkey.new_unique()),
            "authority": str(Pubkey.new_unique()),
            "base_vault": str(Pubkey.new_unique()),
            "quote_vault": str(Pubkey.new_unique()),
        }
        provider = ConfigPoolDataProvider({"curve_amm": {str(token_mint): entry}})

        descriptor = await provider.fetch_curve_pool(token_mint)

        assert descriptor.kind == VenueKind.CURVE_AMM
        assert descriptor.base_mint == token_mint
        assert descriptor.quote_mint == NATIVE_MINT

    @pytest.mark.asyncio
    async def test_missing_pool(self, pool_id):
        provider = ConfigPoolDataProvider({})

        with pytest.raises(PoolNotFoundError):
            await provider.fetch_cpmm_pool(pool_id)
        with pytest.raises(PoolNotFoundError):
            await provider.fetch_orderbook_pool(pool_id)

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, pool_id, cpmm_entry):
        cpmm_entry["vault_c"] = str(Pubkey.new_unique())
        provider = ConfigPoolDataProvider({"constant_product_amm": {str(pool_id): cpmm_entry}})

        with pytest.raises(ValueError, match="vault_c"):
            await provider.fetch_cpmm_pool(pool_id)


class TestSyntheticPoolDataProvider:
    """Tests for hash-derived placeholder descriptors."""

    @pytest.mark.asyncio
    async def test_deterministic(self):
        pool_id = Pubkey.new_unique()
        first = await SyntheticPoolDataProvider().fetch_cpmm_pool(pool_id)
        second = await SyntheticPoolDataProvider().fetch_cpmm_pool(pool_id)

        assert first == second
        assert NATIVE_MINT in (first.mint_a, first.mint_b)
        assert first.token_mint != NATIVE_MINT

    @pytest.mark.asyncio
    async def test_order_book_markets_are_not_cpmm(self):
        market = Pubkey.new_unique()
        provider = SyntheticPoolDataProvider(order_book_markets=[market])

        with pytest.raises(PoolNotFoundError):
            await provider.fetch_cpmm_pool(market)
        descriptor = await provider.fetch_orderbook_pool(market)
        assert descriptor.market_id == market
        assert descriptor.quote_mint == NATIVE_MINT

    @pytest.mark.asyncio
    async def test_curve_pool_uses_base_mint(self, token_mint):
        descriptor = await SyntheticPoolDataProvider().fetch_curve_pool(token_mint)

        assert descriptor.base_mint == token_mint
        assert descriptor.token_mint == token_mint


class TestPoolDataProvider:

    def test_incomplete_provider_cannot_be_created(self):
        class CpmmOnlyProvider(PoolDataProvider):
            async def fetch_cpmm_pool(self, pool_id):
                raise PoolNotFoundError(str(pool_id))

        with pytest.raises(TypeError):
            CpmmOnlyProvider()
