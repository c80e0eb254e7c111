"""
Assembles one cycle's bundle: a funding envelope plus one swap envelope per wallet.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from .builders import InstructionBuilder
from .constants import (
    JITO_TIP_ACCOUNTS,
    MAX_TRANSACTION_SIZE,
    NATIVE_MINT,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WRAP_BUFFER_DENOMINATOR,
    WRAP_BUFFER_NUMERATOR,
)
from .errors import InstructionBuildError
from .models import (
    Bundle,
    CycleParameters,
    EphemeralWallet,
    SwapSide,
    TransactionEnvelope,
    VenueKind,
)
from .pricing import PriceEstimator, apply_slippage
from .retry import RetryExecutor, RetryPolicy
from .token_program import (
    TokenProgramResolver,
    close_account,
    create_associated_token_account_idempotent,
    get_associated_token_address,
    sync_native,
)
from .utils import get_terminal_colors, short_key
from .venue_resolver import VenueResolver
from .wallet_manager import EphemeralWalletManager

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


@dataclass
class AssembledBundle:
    """
    A signed bundle plus the wallet bookkeeping the orchestrator needs.

    `wallets` are all wallets funded by the funding envelope; `included`
    have a swap envelope (and so an in-bundle return transfer);
    `excluded` pairs each remaining wallet with the reason its envelope
    could not be built.
    """
    bundle: Bundle
    wallets: List[EphemeralWallet]
    included: List[EphemeralWallet] = field(default_factory=list)
    excluded: List[Tuple[EphemeralWallet, str]] = field(default_factory=list)
    swap_amounts: Dict[Pubkey, int] = field(default_factory=dict)


def compile_envelope(
    payer: Pubkey,
    instructions: List[Instruction],
    steps: List[str],
    signers: Sequence[Keypair],
    blockhash: Hash,
    wallet: Optional[Pubkey] = None
) -> TransactionEnvelope:
    """
    Compile, sign and size-check a v0 transaction.

    Raises:
        InstructionBuildError: If compilation/signing fails or the
                               transaction exceeds MAX_TRANSACTION_SIZE
    """
    try:
        message = MessageV0.try_compile(
            payer=payer,
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )
        tx = VersionedTransaction(message, list(signers))
    except Exception as e:
        raise InstructionBuildError(f"Cannot compile transaction for payer {short_key(payer)}: {e}") from e

    raw_len = len(bytes(tx))
    if raw_len > MAX_TRANSACTION_SIZE:
        raise InstructionBuildError(
            f"Transaction for payer {short_key(payer)} is {raw_len} bytes (max {MAX_TRANSACTION_SIZE})"
        )
    logger.debug(
        f"Compiled envelope payer={short_key(payer)} instructions={len(instructions)} "
        f"size={colors['GREEN']}{raw_len}{colors['RESET']}/{MAX_TRANSACTION_SIZE} bytes"
    )
    return TransactionEnvelope(
        payer=payer,
        instructions=list(instructions),
        steps=list(steps),
        blockhash=blockhash,
        signers=[s.pubkey() for s in signers],
        transaction=tx,
        wallet=wallet,
    )


class BundleAssembler:
    """Builds the funding and swap envelopes for one cycle around a single blockhash."""

    def __init__(
        self,
        solana_client,
        wallet_manager: EphemeralWalletManager,
        venue_resolver: VenueResolver,
        token_programs: TokenProgramResolver,
        builders: Dict[VenueKind, InstructionBuilder],
        estimator: PriceEstimator,
        retry: Optional[RetryExecutor] = None,
        rng: Optional[random.Random] = None,
        tip_accounts: Sequence[Pubkey] = JITO_TIP_ACCOUNTS,
        blockhash_policy: Optional[RetryPolicy] = None
    ):
        self.solana = solana_client
        self.wallets = wallet_manager
        self.venues = venue_resolver
        self.token_programs = token_programs
        self.builders = builders
        self.retry = retry or RetryExecutor()
        self.estimator = estimator
        self.rng = rng or random.Random()
        self.tip_accounts = list(tip_accounts)
        self.blockhash_policy = blockhash_policy or RetryPolicy(max_retries=5)

    async def fetch_blockhash(self) -> Tuple[Hash, int]:
        return await self.retry.run(self.solana.get_latest_blockhash, "Blockhash fetch", self.blockhash_policy)

    def swap_amount(self, params: CycleParameters) -> int:
        return self.rng.randint(params.min_amount, params.max_amount)

    async def assemble(
        self,
        params: CycleParameters,
        main: Keypair,
        wallets: List[EphemeralWallet]
    ) -> AssembledBundle:
        """
        Build and sign every envelope for one cycle.

        Args:
            params: Cycle parameters
            main: Main wallet keypair (funds the wallets, owns the token accounts)
            wallets: Freshly generated, already persisted ephemeral wallets

        Returns:
            AssembledBundle whose bundle holds the funding envelope first

        Raises:
            RetryExhaustedError: Blockhash could not be fetched
            InstructionBuildError: Funding envelope could not be built
        """
        blockhash, last_valid_block_height = await self.fetch_blockhash()
        logger.info(
            f"Assembling bundle for market {colors['CYAN']}{params.market_id[:8]}{colors['RESET']} "
            f"with blockhash {str(blockhash)[:8]} (valid to height {last_valid_block_height})"
        )

        funding = self.build_funding_envelope(params, main, wallets, blockhash)
        envelopes = [funding]
        included: List[EphemeralWallet] = []
        excluded: List[Tuple[EphemeralWallet, str]] = []
        swap_amounts: Dict[Pubkey, int] = {}

        for wallet in wallets:
            try:
                envelope, amount = await self.build_swap_envelope(params, main, wallet, blockhash)
            except Exception as e:
                logger.error(
                    f"{colors['RED']}Excluding wallet {short_key(wallet.pubkey)}{colors['RESET']} "
                    f"(market {params.market_id[:8]}): {e}"
                )
                excluded.append((wallet, str(e)))
                continue
            envelopes.append(envelope)
            included.append(wallet)
            swap_amounts[wallet.pubkey] = amount

        bundle = Bundle(envelopes=envelopes, blockhash=blockhash, last_valid_block_height=last_valid_block_height)
        logger.info(
            f"Bundle assembled: {colors['GREEN']}{len(envelopes)}{colors['RESET']} envelopes, "
            f"{len(included)}/{len(wallets)} wallets swapping"
        )
        return AssembledBundle(
            bundle=bundle,
            wallets=list(wallets),
            included=included,
            excluded=excluded,
            swap_amounts=swap_amounts,
        )

    def build_funding_envelope(
        self,
        params: CycleParameters,
        main: Keypair,
        wallets: List[EphemeralWallet],
        blockhash: Hash
    ) -> TransactionEnvelope:
        """Priority fee, one transfer per wallet, then the relay tip (if any)."""
        instructions = [set_compute_unit_price(params.priority_fee_micro_lamports)]
        steps = ["priority_fee"]

        funding = self.wallets.funding_instructions(main.pubkey(), wallets)
        instructions.extend(funding)
        steps.extend(["fund"] * len(funding))

        if params.tip_lamports > 0:
            tip_account = self.rng.choice(self.tip_accounts)
            instructions.append(transfer(TransferParams(
                from_pubkey=main.pubkey(), to_pubkey=tip_account, lamports=params.tip_lamports
            )))
            steps.append("tip")
            logger.debug(f"Tip {colors['YELLOW']}{params.tip_lamports}{colors['RESET']} lamports to {short_key(tip_account)}")

        return compile_envelope(main.pubkey(), instructions, steps, [main], blockhash)

    async def build_swap_envelope(
        self,
        params: CycleParameters,
        main: Keypair,
        wallet: EphemeralWallet,
        blockhash: Hash
    ) -> Tuple[TransactionEnvelope, int]:
        """
        Build one wallet's swap envelope.

        The main wallet is the trader (owns and funds the token accounts);
        the ephemeral wallet pays fees and returns its funding at the end.

        Returns:
            (envelope, swap amount in lamports)
        """
        descriptor = await self.venues.resolve(params.market_id, params.venue_kind, params.base_mint)
        builder = self.builders[descriptor.kind]
        trader = main.pubkey()

        token_mint = descriptor.token_mint
        token_program = await self.token_programs.resolve(token_mint)
        wsol_account = get_associated_token_address(trader, NATIVE_MINT, TOKEN_PROGRAM_ID)
        token_account = get_associated_token_address(trader, token_mint, token_program)

        amount = self.swap_amount(params)
        wrap_amount = amount * WRAP_BUFFER_NUMERATOR // WRAP_BUFFER_DENOMINATOR
        buy_min_out = apply_slippage(self.estimator(amount, token_mint), params.slippage_bps)

        buy = await builder.build(SwapSide.BUY, amount, buy_min_out, descriptor, trader)
        sell = await builder.build(SwapSide.SELL, buy_min_out, 0, descriptor, trader)

        instructions = [
            set_compute_unit_price(params.priority_fee_micro_lamports),
            create_associated_token_account_idempotent(trader, trader, NATIVE_MINT, TOKEN_PROGRAM_ID),
            transfer(TransferParams(from_pubkey=trader, to_pubkey=wsol_account, lamports=wrap_amount)),
            sync_native(wsol_account),
            create_associated_token_account_idempotent(trader, trader, token_mint, token_program),
        ]
        steps = ["priority_fee", "create_wsol_account", "wrap", "sync_native", "create_token_account"]

        instructions.extend(buy.instructions)
        steps.extend(["buy"] * len(buy))
        instructions.extend(sell.instructions)
        steps.extend(["sell"] * len(sell))

        if token_program == TOKEN_2022_PROGRAM_ID:
            logger.info(f"Token-2022 mint {short_key(token_mint)}: leaving token account open")
        else:
            instructions.append(close_account(token_account, trader, trader, token_program))
            steps.append("close_token_account")

        instructions.append(close_account(wsol_account, trader, trader, TOKEN_PROGRAM_ID))
        steps.append("close_wsol_account")
        instructions.append(self.wallets.reclaim_instruction(wallet, trader))
        steps.append("return_funds")

        envelope = compile_envelope(wallet.pubkey, instructions, steps, [main, wallet.keypair], blockhash, wallet=wallet.pubkey)
        logger.info(
            f"Swap envelope for {colors['CYAN']}{short_key(wallet.pubkey)}{colors['RESET']}: "
            f"{descriptor.kind.value} swap {colors['GREEN']}{amount}{colors['RESET']} lamports, "
            f"min out {buy_min_out}"
        )
        return envelope, amount
