"""
Per-venue swap instruction builders.

Every builder implements the same coroutine:

    build(side, input_amount, min_output_amount, descriptor, trader) -> InstructionSet

BUY spends wrapped SOL for the pool's token, SELL spends the token for
wrapped SOL. Token accounts are the trader's associated token accounts;
the non-native mint may be owned by either token program, the native
mint always uses the classic one. min_output_amount is taken as given.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .constants import (
    AMM_V4_DEST_LEG_TAG,
    AMM_V4_SOURCE_LEG_TAG,
    AMM_V4_SWAP_TAG,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    CPMM_SWAP_BASE_INPUT_DISCRIMINATOR,
    CURVE_BUY_DISCRIMINATOR,
    CURVE_SELL_DISCRIMINATOR,
    NATIVE_MINT,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from .errors import InstructionBuildError
from .models import (
    CpmmPoolDescriptor,
    CurvePoolDescriptor,
    InstructionSet,
    OrderBookPoolDescriptor,
    SwapSide,
    VenueDescriptor,
    VenueKind,
)
from .token_program import TokenProgramResolver, get_associated_token_address
from .utils import short_key

logger = logging.getLogger(__name__)


def _u64(value: int) -> bytes:
    return value.to_bytes(8, 'little')


def _ro(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=False, is_writable=False)


def _rw(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=False, is_writable=True)


class InstructionBuilder(ABC):
    """Base class: one subclass per venue kind."""

    kind: VenueKind
    descriptor_type: type

    def __init__(self, token_programs: TokenProgramResolver):
        self.token_programs = token_programs

    def _check(self, descriptor: VenueDescriptor):
        if not isinstance(descriptor, self.descriptor_type):
            raise InstructionBuildError(
                f"{type(self).__name__} cannot build for {type(descriptor).__name__}"
            )

    @abstractmethod
    async def build(
        self,
        side: SwapSide,
        input_amount: int,
        min_output_amount: int,
        descriptor: VenueDescriptor,
        trader: Pubkey
    ) -> InstructionSet:
        pass


class CurveAmmBuilder(InstructionBuilder):
    """Single buy or sell instruction against a bonding-curve style pool."""

    kind = VenueKind.CURVE_AMM
    descriptor_type = CurvePoolDescriptor

    async def build(self, side, input_amount, min_output_amount, descriptor, trader) -> InstructionSet:
        self._check(descriptor)
        base_program = await self.token_programs.resolve(descriptor.base_mint)
        quote_program = await self.token_programs.resolve(descriptor.quote_mint)

        user_base = get_associated_token_address(trader, descriptor.base_mint, base_program)
        user_quote = get_associated_token_address(trader, descriptor.quote_mint, quote_program)

        discriminator = CURVE_BUY_DISCRIMINATOR if side == SwapSide.BUY else CURVE_SELL_DISCRIMINATOR
        data = discriminator + _u64(input_amount) + _u64(min_output_amount)

        accounts = [
            _rw(descriptor.address),
            _ro(descriptor.authority),
            _rw(descriptor.base_vault),
            _rw(descriptor.quote_vault),
            _rw(user_base),
            _rw(user_quote),
            AccountMeta(pubkey=trader, is_signer=True, is_writable=False),
            _ro(base_program),
            _ro(quote_program),
            _ro(ASSOCIATED_TOKEN_PROGRAM_ID),
            _ro(SYSTEM_PROGRAM_ID),
        ]
        return InstructionSet(side, [Instruction(descriptor.program_id, data, accounts)])


class CpmmBuilder(InstructionBuilder):
    """
    Single swap_base_input instruction against a constant-product pool.

    Vaults, token programs and token accounts are picked by matching the
    input/output mint against the descriptor's mint_a / mint_b slots. When
    the descriptor names a proxy program the instruction is sent to the
    proxy with the CPMM program id as its first account.
    """

    kind = VenueKind.CONSTANT_PRODUCT_AMM
    descriptor_type = CpmmPoolDescriptor

    @staticmethod
    def _slot(descriptor: CpmmPoolDescriptor, mint: Pubkey) -> str:
        if mint == descriptor.mint_a:
            return "a"
        if mint == descriptor.mint_b:
            return "b"
        raise InstructionBuildError(
            f"Mint {short_key(mint)} is not part of CPMM pool {short_key(descriptor.pool_id)}"
        )

    async def build(self, side, input_amount, min_output_amount, descriptor, trader) -> InstructionSet:
        self._check(descriptor)
        token_mint = descriptor.token_mint
        if side == SwapSide.BUY:
            input_mint, output_mint = NATIVE_MINT, token_mint
        else:
            input_mint, output_mint = token_mint, NATIVE_MINT

        input_slot = self._slot(descriptor, input_mint)
        output_slot = self._slot(descriptor, output_mint)
        vaults = {"a": descriptor.vault_a, "b": descriptor.vault_b}

        input_program = await self.token_programs.resolve(input_mint)
        output_program = await self.token_programs.resolve(output_mint)

        accounts = [
            AccountMeta(pubkey=trader, is_signer=True, is_writable=False),
            _ro(descriptor.authority),
            _ro(descriptor.config_id),
            _rw(descriptor.pool_id),
            _rw(get_associated_token_address(trader, input_mint, input_program)),
            _rw(get_associated_token_address(trader, output_mint, output_program)),
            _rw(vaults[input_slot]),
            _rw(vaults[output_slot]),
            _ro(input_program),
            _ro(output_program),
            _ro(input_mint),
            _ro(output_mint),
            _rw(descriptor.observation_id),
        ]
        data = CPMM_SWAP_BASE_INPUT_DISCRIMINATOR + _u64(input_amount) + _u64(min_output_amount)

        program_id = descriptor.program_id
        if descriptor.proxy_program is not None:
            accounts.insert(0, _ro(descriptor.program_id))
            program_id = descriptor.proxy_program

        return InstructionSet(side, [Instruction(program_id, data, accounts)])


@dataclass
class OrderBookLegs:
    """Buy and sell instruction lists; exactly one of them is populated."""
    buy: List[Instruction] = field(default_factory=list)
    sell: List[Instruction] = field(default_factory=list)


class OrderBookBuilder(InstructionBuilder):
    """
    Order-book backed AMM swap: primary swap plus source and destination legs.
    """

    kind = VenueKind.ORDER_BOOK
    descriptor_type = OrderBookPoolDescriptor

    async def build_leg_sets(
        self,
        sell: bool,
        input_amount: int,
        min_output_amount: int,
        descriptor: OrderBookPoolDescriptor,
        trader: Pubkey
    ) -> OrderBookLegs:
        """
        Build the three instructions for one direction.

        Args:
            sell: False routes wrapped SOL -> token (buy legs), True routes token -> wrapped SOL (sell legs)

        Returns:
            OrderBookLegs with only the requested direction filled
        """
        self._check(descriptor)
        token_mint = descriptor.token_mint
        token_program = await self.token_programs.resolve(token_mint)
        wsol_account = get_associated_token_address(trader, NATIVE_MINT, TOKEN_PROGRAM_ID)
        token_account = get_associated_token_address(trader, token_mint, token_program)

        source = token_account if sell else wsol_account
        destination = wsol_account if sell else token_account
        signer = AccountMeta(pubkey=trader, is_signer=True, is_writable=False)

        swap = Instruction(
            descriptor.program_id,
            bytes([AMM_V4_SWAP_TAG]) + _u64(input_amount) + _u64(min_output_amount),
            [
                _ro(TOKEN_PROGRAM_ID),
                _rw(descriptor.amm_id),
                _ro(descriptor.authority),
                _rw(descriptor.open_orders),
                _rw(descriptor.target_orders),
                _rw(descriptor.base_vault),
                _rw(descriptor.quote_vault),
                _ro(descriptor.market_program_id),
                _rw(descriptor.market_id),
                _rw(descriptor.bids),
                _rw(descriptor.asks),
                _rw(descriptor.event_queue),
                _rw(descriptor.market_base_vault),
                _rw(descriptor.market_quote_vault),
                _ro(descriptor.market_authority),
                _rw(source),
                _rw(destination),
                signer,
            ]
        )
        source_leg = Instruction(
            descriptor.program_id,
            bytes([AMM_V4_SOURCE_LEG_TAG]) + _u64(input_amount),
            [_rw(descriptor.amm_id), _rw(source), signer]
        )
        destination_leg = Instruction(
            descriptor.program_id,
            bytes([AMM_V4_DEST_LEG_TAG]) + _u64(min_output_amount),
            [_rw(descriptor.amm_id), _rw(destination), signer]
        )

        instructions = [swap, source_leg, destination_leg]
        if sell:
            return OrderBookLegs(sell=instructions)
        return OrderBookLegs(buy=instructions)

    async def build(self, side, input_amount, min_output_amount, descriptor, trader) -> InstructionSet:
        legs = await self.build_leg_sets(side == SwapSide.SELL, input_amount, min_output_amount, descriptor, trader)
        return InstructionSet(side, legs.sell if side == SwapSide.SELL else legs.buy)


def builder_registry(token_programs: TokenProgramResolver) -> Dict[VenueKind, InstructionBuilder]:
    """One builder per venue kind, sharing a token program resolver."""
    return {
        builder.kind: builder
        for builder in (
            CurveAmmBuilder(token_programs),
            CpmmBuilder(token_programs),
            OrderBookBuilder(token_programs),
        )
    }
