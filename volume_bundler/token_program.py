"""
Token program resolution and SPL token / associated-account instruction encoders.
"""
import logging
from typing import Dict, Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    ATA_CREATE_IDEMPOTENT_TAG,
    NATIVE_MINT,
    SYSTEM_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_CLOSE_ACCOUNT_TAG,
    TOKEN_PROGRAM_ID,
    TOKEN_SYNC_NATIVE_TAG,
)
from .errors import TokenProgramResolutionError
from .utils import get_terminal_colors, short_key

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

KNOWN_TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)


class TokenProgramResolver:
    """
    Process-lifetime cache of mint -> owning token program.

    Entries are never evicted or overwritten. Create a fresh instance per
    test (or per run) to start with an empty cache.
    """

    def __init__(self, solana_client, strict: bool = False):
        """
        Args:
            solana_client: Anything with `async get_account_owner(pubkey) -> Optional[Pubkey]`
            strict: Propagate TokenProgramResolutionError instead of falling
                    back to the classic token program
        """
        self.solana = solana_client
        self.strict = strict
        self._cache: Dict[Pubkey, Pubkey] = {NATIVE_MINT: TOKEN_PROGRAM_ID}
        self.queries = 0

    def cached(self, mint: Pubkey) -> Optional[Pubkey]:
        return self._cache.get(mint)

    async def resolve(self, mint: Pubkey) -> Pubkey:
        """
        Resolve the token program that owns a mint.

        Args:
            mint: Mint address

        Returns:
            TOKEN_PROGRAM_ID or TOKEN_2022_PROGRAM_ID

        Raises:
            TokenProgramResolutionError: In strict mode, when the mint is missing
                                         or owned by an unknown program
        """
        program = self._cache.get(mint)
        if program is not None:
            return program

        try:
            program = await self._query(mint)
        except TokenProgramResolutionError as e:
            if self.strict:
                raise
            logger.warning(
                f"{colors['YELLOW']}Token program resolution failed for {short_key(mint)}: {e}. "
                f"Falling back to classic token program{colors['RESET']}"
            )
            program = TOKEN_PROGRAM_ID

        self._cache[mint] = program
        if program == TOKEN_2022_PROGRAM_ID:
            logger.info(f"Token-2022 mint detected: {colors['CYAN']}{short_key(mint)}{colors['RESET']}")
        return program

    async def _query(self, mint: Pubkey) -> Pubkey:
        self.queries += 1
        try:
            owner = await self.solana.get_account_owner(mint)
        except Exception as e:
            raise TokenProgramResolutionError(f"Cannot fetch mint account {short_key(mint)}: {e}") from e
        if owner is None:
            raise TokenProgramResolutionError(f"Mint account {short_key(mint)} not found")
        if owner not in KNOWN_TOKEN_PROGRAMS:
            raise TokenProgramResolutionError(f"Mint {short_key(mint)} owned by unknown program {owner}")
        return owner


def get_associated_token_address(owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM_ID) -> Pubkey:
    """Derive the associated token account for (owner, mint, token program)."""
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return address


def create_associated_token_account_idempotent(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID
) -> Instruction:
    """Create the owner's ATA for mint, succeeding if it already exists."""
    ata = get_associated_token_address(owner, mint, token_program)
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=token_program, is_signer=False, is_writable=False),
    ]
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, bytes([ATA_CREATE_IDEMPOTENT_TAG]), accounts)


def sync_native(account: Pubkey) -> Instruction:
    """Sync a wrapped SOL account's token amount with its lamports."""
    accounts = [AccountMeta(pubkey=account, is_signer=False, is_writable=True)]
    return Instruction(TOKEN_PROGRAM_ID, bytes([TOKEN_SYNC_NATIVE_TAG]), accounts)


def close_account(
    account: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID
) -> Instruction:
    accounts = [
        AccountMeta(pubkey=account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]
    return Instruction(token_program, bytes([TOKEN_CLOSE_ACCOUNT_TAG]), accounts)
