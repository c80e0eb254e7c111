"""
Solana RPC client for balances, account owners, blockhashes and transaction lookups.
"""
import asyncio
import logging
from typing import Optional, Tuple

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Finalized
from solana.rpc.types import TxOpts

logger = logging.getLogger(__name__)


class SolanaClient:
    """Client for Solana RPC operations with failover support."""

    def __init__(self, rpc_url: str, wallet_keypair: Optional[Keypair] = None, fallback_rpc_url: Optional[str] = None):
        self.rpc_url_primary = rpc_url
        self.rpc_url_fallback = fallback_rpc_url
        self._active_rpc_url = rpc_url
        self._failover_used = False  # Track if failover has been used (for logging)
        self.client = AsyncClient(rpc_url)
        self.wallet = wallet_keypair

    async def _switch_to_fallback(self, reason: str) -> bool:
        """
        Switch to fallback RPC if available.

        Args:
            reason: Reason for failover (for logging)

        Returns:
            True if switched to fallback, False if no fallback available
        """
        if self.rpc_url_fallback and self._active_rpc_url == self.rpc_url_primary:
            if not self._failover_used:
                # Log domains only, URLs may carry API keys
                primary_domain = self.rpc_url_primary.split('//')[1].split('/')[0] if '//' in self.rpc_url_primary else self.rpc_url_primary
                fallback_domain = self.rpc_url_fallback.split('//')[1].split('/')[0] if '//' in self.rpc_url_fallback else self.rpc_url_fallback
                logger.warning(
                    f"RPC failover: PRIMARY ({primary_domain}) -> FALLBACK ({fallback_domain}), reason: {reason}"
                )
                self._failover_used = True

            try:
                await self.client.close()
            except Exception as e:
                logger.debug(f"Error closing primary RPC client: {e}")

            self._active_rpc_url = self.rpc_url_fallback
            self.client = AsyncClient(self.rpc_url_fallback)
            return True
        return False

    def _is_failover_error(self, error: Exception) -> bool:
        """
        Check if error should trigger failover.

        Args:
            error: Exception to check

        Returns:
            True if error should trigger failover
        """
        error_str = str(error).lower()
        error_type = type(error).__name__

        # Rate limit / quota
        if '429' in error_str or 'rate limit' in error_str or 'quota' in error_str:
            return True

        # Timeout / network
        if 'timeout' in error_str or 'timed out' in error_str:
            return True
        if error_type in ('ConnectError', 'ConnectTimeout', 'NetworkError', 'TimeoutError', 'ReadTimeout'):
            return True

        if 'connection' in error_str or 'network' in error_str:
            return True

        return False

    async def _with_failover(self, coro_func, *args, **kwargs):
        """
        Execute coroutine with failover support.

        Args:
            coro_func: Coroutine function to execute
            *args, **kwargs: Arguments to pass to coro_func

        Returns:
            Result from coro_func

        Raises:
            Exception: If both primary and fallback fail
        """
        try:
            return await coro_func(*args, **kwargs)
        except Exception as e:
            if self._is_failover_error(e) and await self._switch_to_fallback(str(e)):
                try:
                    return await coro_func(*args, **kwargs)
                except Exception as e2:
                    logger.error(f"Both primary and fallback RPC failed. Last error: {e2}")
                    raise e2 from e
            raise

    async def get_balance(self, pubkey: Optional[Pubkey] = None) -> int:
        """
        Get SOL balance in lamports. Raises on RPC failure.

        Args:
            pubkey: Public key (defaults to wallet)

        Returns:
            Balance in lamports
        """
        if pubkey is None:
            if self.wallet is None:
                raise ValueError("No wallet or pubkey provided")
            pubkey = self.wallet.pubkey()

        async def _get():
            resp = await self.client.get_balance(pubkey, commitment=Confirmed)
            return resp.value

        return await self._with_failover(_get)

    async def get_account_owner(self, pubkey: Pubkey) -> Optional[Pubkey]:
        """
        Get the program that owns an account.

        Returns:
            Owner program id, or None if the account does not exist
        """
        async def _get():
            resp = await self.client.get_account_info(pubkey, commitment=Confirmed)
            if resp.value is None:
                return None
            return resp.value.owner

        return await self._with_failover(_get)

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        """
        Get the latest finalized blockhash.

        Returns:
            (blockhash, last_valid_block_height)

        Raises:
            ValueError: If the RPC returned no value
        """
        async def _get():
            resp = await self.client.get_latest_blockhash(commitment=Finalized)
            if not resp.value:
                raise ValueError("getLatestBlockhash returned no value")
            return resp.value.blockhash, resp.value.last_valid_block_height

        return await self._with_failover(_get)

    async def send_versioned_transaction(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = False
    ) -> str:
        """
        Send a signed VersionedTransaction outside of a bundle (recovery sweeps).

        Returns:
            Transaction signature (base58 string)
        """
        async def _send():
            opts = TxOpts(skip_preflight=skip_preflight, max_retries=0)
            result = await self.client.send_transaction(tx, opts=opts)
            sig = str(result.value)
            logger.debug(f"Transaction sent: {sig}")
            return sig

        return await self._with_failover(_send)

    async def confirm_transaction(
        self,
        signature: str,
        timeout: float = 30.0
    ) -> bool:
        """
        Wait for transaction confirmation.

        Args:
            signature: Transaction signature
            timeout: Timeout in seconds

        Returns:
            True if confirmed, False otherwise
        """
        try:
            result = await asyncio.wait_for(
                self.client.confirm_transaction(Signature.from_string(signature), commitment=Confirmed),
                timeout=timeout
            )
            return result.value[0] is not None and result.value[0].err is None
        except Exception as e:
            logger.error(f"Error confirming transaction {signature[:8]}: {e}")
            return False

    async def get_compute_units_consumed(self, signature: str) -> Optional[int]:
        """
        Get compute units consumed by a landed transaction.

        Returns:
            Compute units, or None if the transaction or its meta is unavailable
        """
        try:
            resp = await self.client.get_transaction(
                Signature.from_string(signature),
                commitment=Confirmed,
                max_supported_transaction_version=0
            )
        except Exception as e:
            logger.debug(f"getTransaction failed for {signature[:8]}: {e}")
            return None
        if resp.value is None or resp.value.transaction.meta is None:
            return None
        return resp.value.transaction.meta.compute_units_consumed

    async def close(self):
        """Close RPC client."""
        await self.client.close()
