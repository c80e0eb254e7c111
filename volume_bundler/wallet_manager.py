"""
Ephemeral wallet lifecycle: generate, persist, fund, reclaim, recover.

Each wallet is written to <keypairs_dir>/<market_id>/wallet-<pubkey[:8]>.json
(JSON array of the 64 secret-key bytes) before any instruction references
it. Reclaimed wallets are moved into a `reclaimed/` subdirectory so that
what is left in the market directory is exactly the set still holding
(or possibly holding) funds.
"""
import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from .constants import (
    BASE_SIGNATURE_FEE_LAMPORTS,
    DEFAULT_DUST_THRESHOLD_LAMPORTS,
    DEFAULT_FEE_RESERVE_LAMPORTS,
    DEFAULT_FUNDING_LAMPORTS,
    MAX_COMPUTE_UNITS_PER_TRANSACTION,
    SWAP_ENVELOPE_SIGNATURES,
)
from .models import EphemeralWallet
from .utils import get_terminal_colors, short_key

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

RECLAIMED_DIR = "reclaimed"


def minimum_fee_reserve(priority_fee_micro_lamports: int = 0) -> int:
    """
    Lamports a swap envelope can be charged: both signatures plus the
    priority fee at the per-transaction compute unit cap.
    """
    priority = (priority_fee_micro_lamports * MAX_COMPUTE_UNITS_PER_TRANSACTION + 999_999) // 1_000_000
    return SWAP_ENVELOPE_SIGNATURES * BASE_SIGNATURE_FEE_LAMPORTS + priority


class EphemeralWalletManager:
    """Repository and instruction factory for single-use cycle wallets."""

    def __init__(
        self,
        keypairs_dir: Union[str, Path] = "keypairs",
        funding_lamports: int = DEFAULT_FUNDING_LAMPORTS,
        fee_reserve_lamports: int = DEFAULT_FEE_RESERVE_LAMPORTS,
        dust_threshold_lamports: int = DEFAULT_DUST_THRESHOLD_LAMPORTS
    ):
        if fee_reserve_lamports >= funding_lamports:
            raise ValueError(
                f"Fee reserve ({fee_reserve_lamports}) must be below funding amount ({funding_lamports})"
            )
        self.keypairs_dir = Path(keypairs_dir)
        self.funding_lamports = funding_lamports
        self.fee_reserve_lamports = fee_reserve_lamports
        self.dust_threshold_lamports = dust_threshold_lamports

    @property
    def return_lamports(self) -> int:
        """Amount each swap envelope sends back to the main wallet."""
        return self.funding_lamports - self.fee_reserve_lamports

    def market_dir(self, market_id: str) -> Path:
        return self.keypairs_dir / market_id

    # Repository

    def generate(self, count: int, market_id: str) -> List[EphemeralWallet]:
        """
        Create and persist `count` fresh wallets for one cycle.

        Returns only after every key file has been written.
        """
        wallets = []
        for _ in range(count):
            wallet = EphemeralWallet(
                keypair=Keypair(),
                market_id=market_id,
                funding_lamports=self.funding_lamports,
            )
            self.save(wallet)
            wallets.append(wallet)
        logger.info(
            f"Generated {colors['GREEN']}{count}{colors['RESET']} ephemeral wallets for market "
            f"{colors['CYAN']}{market_id[:8]}{colors['RESET']}"
        )
        return wallets

    def save(self, wallet: EphemeralWallet) -> Path:
        directory = self.market_dir(wallet.market_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"wallet-{short_key(wallet.pubkey)}.json"
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, 'w') as f:
            json.dump(list(bytes(wallet.keypair)), f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        wallet.path = path
        logger.debug(f"Persisted wallet {short_key(wallet.pubkey)} to {path}")
        return path

    @staticmethod
    def load(path: Union[str, Path], market_id: Optional[str] = None) -> EphemeralWallet:
        path = Path(path)
        with open(path, 'r') as f:
            secret = json.load(f)
        keypair = Keypair.from_bytes(bytes(secret))
        return EphemeralWallet(
            keypair=keypair,
            market_id=market_id or path.parent.name,
            funding_lamports=0,
            created_at=path.stat().st_mtime,
            reclaimed=path.parent.name == RECLAIMED_DIR,
            path=path,
        )

    def list_by_market(self, market_id: str, include_reclaimed: bool = False) -> List[EphemeralWallet]:
        """Persisted wallets for a market, oldest first."""
        directory = self.market_dir(market_id)
        paths = sorted(directory.glob("wallet-*.json")) if directory.exists() else []
        if include_reclaimed and (directory / RECLAIMED_DIR).exists():
            paths += sorted((directory / RECLAIMED_DIR).glob("wallet-*.json"))
        wallets = [self.load(p, market_id) for p in paths]
        wallets.sort(key=lambda w: w.created_at)
        return wallets

    def mark_reclaimed(self, wallet: EphemeralWallet) -> None:
        """Flag a wallet as drained and move its key file under reclaimed/."""
        wallet.reclaimed = True
        if wallet.path is None or not wallet.path.exists():
            return
        if wallet.path.parent.name == RECLAIMED_DIR:
            return
        target_dir = wallet.path.parent / RECLAIMED_DIR
        target_dir.mkdir(exist_ok=True)
        target = target_dir / wallet.path.name
        os.replace(wallet.path, target)
        wallet.path = target
        logger.debug(f"Wallet {short_key(wallet.pubkey)} marked reclaimed")

    def log_abandoned(self, wallet: EphemeralWallet, reason: str) -> None:
        """Record a wallet whose funds were not returned in-bundle."""
        logger.warning(
            f"{colors['RED']}Abandoned ephemeral wallet {short_key(wallet.pubkey)}{colors['RESET']} "
            f"(market {wallet.market_id[:8]}): {reason}. "
            f"Key kept at {wallet.path}; run recover mode to sweep it"
        )

    # Instructions

    def funding_instructions(self, main: Pubkey, wallets: List[EphemeralWallet]):
        """One transfer of the funding amount from main to each wallet."""
        return [
            transfer(TransferParams(from_pubkey=main, to_pubkey=w.pubkey, lamports=w.funding_lamports))
            for w in wallets
        ]

    def reclaim_instruction(self, wallet: EphemeralWallet, main: Pubkey):
        """Return funding minus the fee reserve from the wallet to main."""
        return transfer(TransferParams(
            from_pubkey=wallet.pubkey,
            to_pubkey=main,
            lamports=wallet.funding_lamports - self.fee_reserve_lamports
        ))

    # Recovery

    async def recover(self, market_id: str, main: Pubkey, solana_client) -> List[Tuple[Pubkey, int]]:
        """
        Sweep every unreclaimed wallet of a market back to main.

        Wallets at or below the dust threshold are only marked reclaimed.
        Failures are logged per wallet and the key file is left in place.

        Returns:
            (wallet pubkey, swept lamports) for each successful sweep
        """
        swept = []
        wallets = self.list_by_market(market_id)
        logger.info(f"Recovering {len(wallets)} wallets for market {colors['CYAN']}{market_id[:8]}{colors['RESET']}")

        for wallet in wallets:
            try:
                balance = await solana_client.get_balance(wallet.pubkey)
                if balance <= self.dust_threshold_lamports:
                    logger.info(f"Wallet {short_key(wallet.pubkey)} holds dust ({balance} lamports), marking reclaimed")
                    self.mark_reclaimed(wallet)
                    continue

                amount = balance - BASE_SIGNATURE_FEE_LAMPORTS
                blockhash, _ = await solana_client.get_latest_blockhash()
                message = MessageV0.try_compile(
                    payer=wallet.pubkey,
                    instructions=[transfer(TransferParams(from_pubkey=wallet.pubkey, to_pubkey=main, lamports=amount))],
                    address_lookup_table_accounts=[],
                    recent_blockhash=blockhash,
                )
                tx = VersionedTransaction(message, [wallet.keypair])
                signature = await solana_client.send_versioned_transaction(tx)
                if not await solana_client.confirm_transaction(signature):
                    logger.warning(f"Sweep of {short_key(wallet.pubkey)} not confirmed ({signature[:8]}), keeping key file")
                    continue

                self.mark_reclaimed(wallet)
                swept.append((wallet.pubkey, amount))
                logger.info(
                    f"Swept {colors['GREEN']}{amount}{colors['RESET']} lamports from "
                    f"{short_key(wallet.pubkey)} ({signature[:8]})"
                )
            except Exception as e:
                logger.error(f"{colors['RED']}Failed to recover wallet {short_key(wallet.pubkey)}{colors['RESET']}: {e}")

        return swept
