"""
Tests for wallet_manager.py - persistence, funding/reclaim instructions, recovery.
"""
import json

import pytest
from unittest.mock import AsyncMock
from solders.hash import Hash
from solders.keypair import Keypair

from volume_bundler.models import EphemeralWallet
from volume_bundler.wallet_manager import EphemeralWalletManager, minimum_fee_reserve


class TestWalletPersistence:
    """Tests for generate / save / load / mark_reclaimed."""

    def test_generate_persists_before_return(self, wallet_manager, market_id):
        wallets = wallet_manager.generate(3, market_id)

        assert len(wallets) == 3
        assert len({w.pubkey for w in wallets}) == 3
        for wallet in wallets:
            assert wallet.path is not None
            assert wallet.path.exists()
            assert wallet.path.parent == wallet_manager.market_dir(market_id)
            assert wallet.path.name == f"wallet-{str(wallet.pubkey)[:8]}.json"
            assert wallet.funding_lamports == 1_200_000
            assert not wallet.reclaimed

    def test_key_file_format(self, wallet_manager, market_id):
        wallet = wallet_manager.generate(1, market_id)[0]

        with open(wallet.path) as f:
            data = json.load(f)

        assert isinstance(data, list)
        assert len(data) == 64
        assert Keypair.from_bytes(bytes(data)).pubkey() == wallet.pubkey
        assert not list(wallet.path.parent.glob("*.tmp"))

    def test_load_roundtrip(self, wallet_manager, market_id):
        wallet = wallet_manager.generate(1, market_id)[0]

        loaded = EphemeralWalletManager.load(wallet.path)

        assert loaded.pubkey == wallet.pubkey
        assert loaded.market_id == market_id
        assert not loaded.reclaimed

    def test_list_by_market(self, wallet_manager, market_id):
        wallets = wallet_manager.generate(2, market_id)
        wallet_manager.generate(1, "other-market")

        listed = wallet_manager.list_by_market(market_id)

        assert {w.pubkey for w in listed} == {w.pubkey for w in wallets}
        assert wallet_manager.list_by_market("unknown") == []

    def test_mark_reclaimed_moves_file(self, wallet_manager, market_id):
        kept, retired = wallet_manager.generate(2, market_id)
        original_path = retired.path

        wallet_manager.mark_reclaimed(retired)

        assert retired.reclaimed
        assert not original_path.exists()
        assert retired.path.parent.name == "reclaimed"
        assert retired.path.exists()
        assert [w.pubkey for w in wallet_manager.list_by_market(market_id)] == [kept.pubkey]
        everything = wallet_manager.list_by_market(market_id, include_reclaimed=True)
        assert {w.pubkey for w in everything} == {kept.pubkey, retired.pubkey}

    def test_mark_reclaimed_twice_is_noop(self, wallet_manager, market_id):
        wallet = wallet_manager.generate(1, market_id)[0]
        wallet_manager.mark_reclaimed(wallet)
        path = wallet.path

        wallet_manager.mark_reclaimed(wallet)

        assert wallet.path == path

    def test_reserve_must_be_below_funding(self, tmp_path):
        with pytest.raises(ValueError, match="Fee reserve"):
            EphemeralWalletManager(tmp_path, funding_lamports=10_000, fee_reserve_lamports=10_000)


class TestWalletInstructions:
    """Tests for funding and reclaim transfer amounts."""

    def test_funding_instructions(self, wallet_manager, market_id, main_keypair):
        wallets = wallet_manager.generate(2, market_id)

        instructions = wallet_manager.funding_instructions(main_keypair.pubkey(), wallets)

        assert len(instructions) == 2
        for ix, wallet in zip(instructions, wallets):
            assert ix.accounts[0].pubkey == main_keypair.pubkey()
            assert ix.accounts[1].pubkey == wallet.pubkey
            # System transfer: u32 tag 2 followed by u64 lamports
            assert bytes(ix.data)[4:] == (1_200_000).to_bytes(8, 'little')

    def test_reclaim_returns_funding_minus_reserve(self, wallet_manager, market_id, main_keypair):
        wallet = wallet_manager.generate(1, market_id)[0]

        ix = wallet_manager.reclaim_instruction(wallet, main_keypair.pubkey())

        assert wallet_manager.return_lamports == 1_190_000
        assert ix.accounts[0].pubkey == wallet.pubkey
        assert ix.accounts[1].pubkey == main_keypair.pubkey()
        assert bytes(ix.data)[4:] == (1_190_000).to_bytes(8, 'little')

    def test_minimum_fee_reserve(self):
        assert minimum_fee_reserve() == 10_000
        # 1_000 microlamports x 1_400_000 CU = 1_400 lamports on top of two signatures
        assert minimum_fee_reserve(1_000) == 11_400
        assert minimum_fee_reserve(1) == 10_002


class TestRecovery:
    """Tests for EphemeralWalletManager.recover."""

    @pytest.fixture
    def solana(self):
        client = AsyncMock()
        client.get_latest_blockhash.return_value = (Hash.new_unique(), 100)
        client.send_versioned_transaction.return_value = "5" * 88
        client.confirm_transaction.return_value = True
        return client

    @pytest.mark.asyncio
    async def test_sweeps_balance_minus_fee(self, wallet_manager, market_id, main_keypair, solana):
        wallet = wallet_manager.generate(1, market_id)[0]
        solana.get_balance.return_value = 1_000_000

        swept = await wallet_manager.recover(market_id, main_keypair.pubkey(), solana)

        assert swept == [(wallet.pubkey, 995_000)]
        tx = solana.send_versioned_transaction.await_args.args[0]
        assert tx.message.account_keys[0] == wallet.pubkey
        assert wallet_manager.list_by_market(market_id) == []

    @pytest.mark.asyncio
    async def test_dust_is_only_marked(self, wallet_manager, market_id, main_keypair, solana):
        wallet_manager.generate(1, market_id)
        solana.get_balance.return_value = 10_000

        swept = await wallet_manager.recover(market_id, main_keypair.pubkey(), solana)

        assert swept == []
        solana.send_versioned_transaction.assert_not_awaited()
        assert wallet_manager.list_by_market(market_id) == []

    @pytest.mark.asyncio
    async def test_unconfirmed_sweep_keeps_key_file(self, wallet_manager, market_id, main_keypair, solana):
        wallet_manager.generate(1, market_id)
        solana.get_balance.return_value = 1_000_000
        solana.confirm_transaction.return_value = False

        swept = await wallet_manager.recover(market_id, main_keypair.pubkey(), solana)

        assert swept == []
        assert len(wallet_manager.list_by_market(market_id)) == 1

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, wallet_manager, market_id, main_keypair, solana):
        wallet_manager.generate(2, market_id)
        solana.get_balance.side_effect = [Exception("RPC error"), 1_000_000]

        swept = await wallet_manager.recover(market_id, main_keypair.pubkey(), solana)

        assert len(swept) == 1
        assert len(wallet_manager.list_by_market(market_id)) == 1

    def test_wallet_dataclass_pubkey(self):
        keypair = Keypair()
        wallet = EphemeralWallet(keypair=keypair, market_id="m", funding_lamports=1)

        assert wallet.pubkey == keypair.pubkey()
