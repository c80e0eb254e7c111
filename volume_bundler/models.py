"""
Data model for venues, wallets, envelopes and bundles.
"""
import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .constants import (
    AMM_V4_PROGRAM_ID,
    CPMM_AUTHORITY,
    CPMM_PROGRAM_ID,
    CURVE_AMM_PROGRAM_ID,
    MAX_BUNDLE_TRANSACTIONS,
    MAX_WALLETS_PER_CYCLE,
    NATIVE_MINT,
    ORDER_BOOK_MARKET_PROGRAM_ID,
)


class VenueKind(str, Enum):
    CURVE_AMM = "curve_amm"
    CONSTANT_PRODUCT_AMM = "constant_product_amm"
    ORDER_BOOK = "order_book"


class SwapSide(str, Enum):
    BUY = "buy"    # native -> token
    SELL = "sell"  # token -> native


def _non_native(mint_a: Pubkey, mint_b: Pubkey) -> Pubkey:
    if mint_a == NATIVE_MINT:
        return mint_b
    return mint_a


@dataclass(frozen=True)
class CurvePoolDescriptor:
    """Bonding-curve style AMM pool (base token quoted against wrapped SOL)."""
    address: Pubkey
    authority: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey = NATIVE_MINT
    fee_account: Optional[Pubkey] = None
    fee_bps: int = 25
    program_id: Pubkey = CURVE_AMM_PROGRAM_ID

    @property
    def kind(self) -> VenueKind:
        return VenueKind.CURVE_AMM

    @property
    def token_mint(self) -> Pubkey:
        return _non_native(self.base_mint, self.quote_mint)


@dataclass(frozen=True)
class CpmmPoolDescriptor:
    """
    Constant-product pool with two mint slots.

    Either slot may hold the native mint; builders pick vaults and token
    accounts by comparing mints against mint_a / mint_b.
    """
    pool_id: Pubkey
    config_id: Pubkey
    mint_a: Pubkey
    mint_b: Pubkey
    vault_a: Pubkey
    vault_b: Pubkey
    observation_id: Pubkey
    authority: Pubkey = CPMM_AUTHORITY
    fee_bps: int = 25
    program_id: Pubkey = CPMM_PROGRAM_ID
    proxy_program: Optional[Pubkey] = None

    @property
    def kind(self) -> VenueKind:
        return VenueKind.CONSTANT_PRODUCT_AMM

    @property
    def token_mint(self) -> Pubkey:
        return _non_native(self.mint_a, self.mint_b)


@dataclass(frozen=True)
class OrderBookPoolDescriptor:
    """AMM pool backed by a central limit order book market."""
    amm_id: Pubkey
    authority: Pubkey
    open_orders: Pubkey
    target_orders: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    market_id: Pubkey
    bids: Pubkey
    asks: Pubkey
    event_queue: Pubkey
    market_base_vault: Pubkey
    market_quote_vault: Pubkey
    market_authority: Pubkey
    market_program_id: Pubkey = ORDER_BOOK_MARKET_PROGRAM_ID
    fee_bps: int = 25
    program_id: Pubkey = AMM_V4_PROGRAM_ID

    @property
    def kind(self) -> VenueKind:
        return VenueKind.ORDER_BOOK

    @property
    def token_mint(self) -> Pubkey:
        return _non_native(self.base_mint, self.quote_mint)


VenueDescriptor = Union[CurvePoolDescriptor, CpmmPoolDescriptor, OrderBookPoolDescriptor]


@dataclass
class EphemeralWallet:
    """Single-use key pair funded for one cycle and drained back to the main wallet."""
    keypair: Keypair
    market_id: str
    funding_lamports: int
    created_at: float = field(default_factory=time.time)
    reclaimed: bool = False
    path: Optional[Path] = None

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()


@dataclass
class InstructionSet:
    """Ordered instructions for one swap side."""
    side: SwapSide
    instructions: List[Instruction]

    def __len__(self) -> int:
        return len(self.instructions)


@dataclass
class TransactionEnvelope:
    """
    One signed v0 transaction plus the labels of its instructions.

    `steps` is parallel to `instructions` and names each one
    (e.g. "priority_fee", "wrap", "buy"), which is what the ordering
    checks and log lines use.
    """
    payer: Pubkey
    instructions: List[Instruction]
    steps: List[str]
    blockhash: Hash
    signers: List[Pubkey]
    transaction: VersionedTransaction
    wallet: Optional[Pubkey] = None  # ephemeral wallet for swap envelopes

    def __post_init__(self):
        if len(self.steps) != len(self.instructions):
            raise ValueError(
                f"TransactionEnvelope steps ({len(self.steps)}) must match instructions ({len(self.instructions)})"
            )

    @property
    def wire_bytes(self) -> bytes:
        return bytes(self.transaction)

    @property
    def base64(self) -> str:
        return base64.b64encode(self.wire_bytes).decode('ascii')

    @property
    def signature(self) -> str:
        return str(self.transaction.signatures[0])

    def index_of(self, step: str) -> int:
        return self.steps.index(step)


@dataclass
class Bundle:
    """
    Ordered envelopes submitted together for atomic inclusion.

    Every envelope must carry the same blockhash and the bundle may not
    exceed the relay's transaction limit.
    """
    envelopes: List[TransactionEnvelope]
    blockhash: Hash
    last_valid_block_height: Optional[int] = None

    def __post_init__(self):
        if not self.envelopes:
            raise ValueError("Bundle must contain at least one envelope")
        if len(self.envelopes) > MAX_BUNDLE_TRANSACTIONS:
            raise ValueError(
                f"Bundle has {len(self.envelopes)} envelopes, max is {MAX_BUNDLE_TRANSACTIONS}"
            )
        for i, envelope in enumerate(self.envelopes):
            if envelope.blockhash != self.blockhash:
                raise ValueError(f"Envelope {i} blockhash {envelope.blockhash} differs from bundle blockhash {self.blockhash}")
            if envelope.transaction.message.recent_blockhash != self.blockhash:
                raise ValueError(f"Envelope {i} transaction was compiled with a different blockhash")

    @property
    def funding(self) -> TransactionEnvelope:
        return self.envelopes[0]

    @property
    def swaps(self) -> List[TransactionEnvelope]:
        return self.envelopes[1:]

    def encoded(self) -> List[str]:
        return [envelope.base64 for envelope in self.envelopes]


@dataclass
class BundleResult:
    """Outcome of one submitted bundle."""
    bundle_id: str
    status: str  # "landed", "failed", "unknown", "simulated"
    landing_slot: Optional[int] = None
    compute_consumed: Optional[int] = None
    error: Optional[str] = None

    @property
    def landed(self) -> bool:
        return self.status == "landed"


@dataclass
class CycleParameters:
    """
    Parameters for a volume run.

    Amounts are lamports. `venue_kind` is a hint: only CURVE_AMM changes
    resolution (it requires base_mint); otherwise the market id is
    classified by the venue resolver.
    """
    market_id: str
    min_amount: int
    max_amount: int
    wallet_count: int = 2
    venue_kind: Optional[VenueKind] = None
    base_mint: Optional[str] = None
    delay_seconds: float = 5.0
    tip_lamports: int = 0
    priority_fee_micro_lamports: int = 1000
    cycles: int = 1
    slippage_bps: int = 500

    def __post_init__(self):
        if not self.market_id:
            raise ValueError("market_id is required")
        if not 1 <= self.wallet_count <= MAX_WALLETS_PER_CYCLE:
            raise ValueError(f"wallet_count must be between 1 and {MAX_WALLETS_PER_CYCLE}, got {self.wallet_count}")
        if self.min_amount <= 0 or self.max_amount < self.min_amount:
            raise ValueError(f"Invalid amount range [{self.min_amount}, {self.max_amount}]")
        if self.tip_lamports < 0:
            raise ValueError(f"tip_lamports must be >= 0, got {self.tip_lamports}")
        if self.cycles < 1:
            raise ValueError(f"cycles must be >= 1, got {self.cycles}")
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {self.delay_seconds}")
        if not 0 <= self.slippage_bps < 10_000:
            raise ValueError(f"slippage_bps must be in [0, 10000), got {self.slippage_bps}")

    @staticmethod
    def priority_level_to_micro_lamports(level: int) -> int:
        """Map an operator priority level (1-1000) to a compute unit price."""
        if not 1 <= level <= 1000:
            raise ValueError(f"Priority level must be between 1 and 1000, got {level}")
        return level * 1000
