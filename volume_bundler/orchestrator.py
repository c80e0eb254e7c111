"""
Volume cycle orchestration: pre-flight check, sequential cycles, result handling.
"""
import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass, field
from typing import List, Optional

from solders.keypair import Keypair

from .bundle_assembler import AssembledBundle, BundleAssembler
from .bundle_client import BundleClient
from .constants import WRAP_BUFFER_DENOMINATOR, WRAP_BUFFER_NUMERATOR
from .errors import BalanceInsufficientError, BundleResultError, OperationCancelledError
from .models import BundleResult, CycleParameters
from .utils import apply_jitter, get_terminal_colors, lamports_to_sol, short_key
from .wallet_manager import EphemeralWalletManager, minimum_fee_reserve

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


@dataclass
class CycleOutcome:
    """What happened in one cycle. `result_task` resolves once the relay reports."""
    index: int
    bundle_id: Optional[str] = None
    wallets: int = 0
    swap_envelopes: int = 0
    excluded: int = 0
    error: Optional[str] = None
    result_task: Optional["asyncio.Task[BundleResult]"] = None

    @property
    def submitted(self) -> bool:
        return self.bundle_id is not None


@dataclass
class RunOutcome:
    cycles: List[CycleOutcome] = field(default_factory=list)
    results: List[BundleResult] = field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0

    @property
    def submitted(self) -> int:
        return sum(1 for c in self.cycles if c.submitted)

    @property
    def failed(self) -> int:
        return sum(1 for c in self.cycles if c.error is not None)

    @property
    def landed(self) -> int:
        return sum(1 for r in self.results if r.landed)


def estimate_run_cost(params: CycleParameters, funding_lamports: int, fee_reserve_lamports: int) -> int:
    """
    Upper bound on lamports the main wallet spends over a run.

    Per cycle and wallet: the wrapped amount at max size plus the fee
    reserve kept by the wallet; per cycle: the tip. On top, one funding
    amount per wallet must be available while a bundle is in flight.
    """
    wrap = math.ceil(params.max_amount * WRAP_BUFFER_NUMERATOR / WRAP_BUFFER_DENOMINATOR)
    per_cycle = params.wallet_count * (wrap + fee_reserve_lamports) + params.tip_lamports
    return params.cycles * per_cycle + params.wallet_count * funding_lamports


class VolumeCycleOrchestrator:
    """
    Drives repeated volume cycles.

    Only the pre-flight balance check aborts a run. Every other failure is
    logged against its cycle and the loop moves on. Result observation runs
    in the background and is not awaited before the next cycle starts;
    `run` drains outstanding observations before returning.
    """

    def __init__(
        self,
        solana_client,
        main_keypair: Keypair,
        wallet_manager: EphemeralWalletManager,
        assembler: BundleAssembler,
        bundle_client: BundleClient,
        rng: Optional[random.Random] = None,
        delay_jitter: float = 0.3
    ):
        self.solana = solana_client
        self.main = main_keypair
        self.wallets = wallet_manager
        self.assembler = assembler
        self.bundle_client = bundle_client
        self.rng = rng or random.Random()
        self.delay_jitter = delay_jitter
        self._pending: List["asyncio.Task[BundleResult]"] = []

    async def preflight(self, params: CycleParameters) -> int:
        """
        Check the main wallet can cover the whole run.

        Returns:
            Current main wallet balance in lamports

        Raises:
            BalanceInsufficientError: Estimated cost exceeds balance
        """
        fee_floor = minimum_fee_reserve(params.priority_fee_micro_lamports)
        if self.wallets.fee_reserve_lamports < fee_floor:
            logger.warning(
                f"{colors['YELLOW']}Fee reserve {self.wallets.fee_reserve_lamports} lamports is below the "
                f"{fee_floor} a swap envelope can be charged at this priority fee; "
                f"return transfers may fail{colors['RESET']}"
            )
        required = estimate_run_cost(params, self.wallets.funding_lamports, self.wallets.fee_reserve_lamports)
        balance = await self.solana.get_balance(self.main.pubkey())
        logger.info(
            f"Pre-flight: balance {colors['GREEN']}{lamports_to_sol(balance):.6f}{colors['RESET']} SOL, "
            f"estimated cost {colors['YELLOW']}{lamports_to_sol(required):.6f}{colors['RESET']} SOL"
        )
        if balance < required:
            raise BalanceInsufficientError(required, balance)
        return balance

    async def run_cycle(self, params: CycleParameters, index: int = 1) -> CycleOutcome:
        """
        Build, submit and start observing one cycle's bundle.

        Never raises for cycle-level failures; they are recorded in
        CycleOutcome.error.
        """
        outcome = CycleOutcome(index=index)
        logger.info(f"{colors['DIM']}--- Cycle {index}/{params.cycles} ---{colors['RESET']}")

        wallets = []
        submitting = False
        try:
            wallets = self.wallets.generate(params.wallet_count, params.market_id)
            outcome.wallets = len(wallets)
            assembled = await self.assembler.assemble(params, self.main, wallets)
            outcome.swap_envelopes = len(assembled.included)
            outcome.excluded = len(assembled.excluded)

            submitting = True
            bundle_id = await self.bundle_client.submit(assembled.bundle.envelopes)
            outcome.bundle_id = bundle_id
            outcome.result_task = self.bundle_client.on_result(
                bundle_id,
                on_success=lambda result: self._handle_success(assembled, result),
                on_failure=lambda error: self._handle_failure(assembled, error),
            )
            self._pending.append(outcome.result_task)
        except OperationCancelledError:
            self._retire(wallets)
            raise
        except Exception as e:
            outcome.error = f"{type(e).__name__}: {e}"
            logger.error(
                f"{colors['RED']}Cycle {index} failed{colors['RESET']} "
                f"(market {params.market_id[:8]}): {outcome.error}"
            )
            if submitting:
                # Relay may have accepted the bundle before the error surfaced
                for wallet in wallets:
                    self.wallets.log_abandoned(wallet, f"submission outcome unknown ({e})")
            else:
                self._retire(wallets)
        return outcome

    def _retire(self, wallets) -> None:
        """Mark never-funded wallets as done."""
        for wallet in wallets:
            self.wallets.mark_reclaimed(wallet)

    def _handle_success(self, assembled: AssembledBundle, result: BundleResult) -> None:
        if result.status == "simulated":
            self._retire(assembled.wallets)
            return
        for wallet in assembled.included:
            self.wallets.mark_reclaimed(wallet)
        for wallet, reason in assembled.excluded:
            self.wallets.log_abandoned(wallet, f"funded without a swap envelope ({reason})")
        logger.info(
            f"Bundle {result.bundle_id[:8]} landed: reclaimed {colors['GREEN']}{len(assembled.included)}{colors['RESET']} "
            f"wallets, slot {result.landing_slot}, CU {result.compute_consumed}"
        )

    def _handle_failure(self, assembled: AssembledBundle, error: BundleResultError) -> None:
        if error.status == "failed":
            # Bundles are atomic: a failed bundle funded nobody
            self._retire(assembled.wallets)
            logger.warning(f"{colors['RED']}{error}{colors['RESET']}; {len(assembled.wallets)} wallets retired unfunded")
            return
        for wallet in assembled.wallets:
            self.wallets.log_abandoned(wallet, f"bundle {error.bundle_id[:8]} outcome unknown")

    async def _delay(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> None:
        delay = apply_jitter(seconds, self.delay_jitter, self.rng)
        logger.info(f"{colors['DIM']}Waiting {delay:.1f}s before next cycle{colors['RESET']}")
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError("Run cancelled during inter-cycle delay")

    async def drain(self) -> List[BundleResult]:
        """Wait for all outstanding result observations."""
        pending, self._pending = self._pending, []
        if not pending:
            return []
        results = await asyncio.gather(*pending, return_exceptions=True)
        drained = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Result observation failed: {result}")
            else:
                drained.append(result)
        return drained

    async def run(self, params: CycleParameters, cancel_event: Optional[asyncio.Event] = None) -> RunOutcome:
        """
        Run `params.cycles` cycles.

        Raises:
            BalanceInsufficientError: Pre-flight check failed (no cycle started)
        """
        started = time.monotonic()
        outcome = RunOutcome()
        await self.preflight(params)
        logger.info(
            f"Starting volume run: market {colors['CYAN']}{params.market_id[:8]}{colors['RESET']}, "
            f"{params.cycles} cycles x {params.wallet_count} wallets, main {short_key(self.main.pubkey())}"
        )

        try:
            for index in range(1, params.cycles + 1):
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError("Run cancelled")
                outcome.cycles.append(await self.run_cycle(params, index))
                if index < params.cycles:
                    await self._delay(params.delay_seconds, cancel_event)
        except OperationCancelledError as e:
            logger.warning(f"{colors['YELLOW']}{e}{colors['RESET']} after {len(outcome.cycles)} cycles")
            outcome.cancelled = True

        outcome.results = await self.drain()
        outcome.duration = time.monotonic() - started
        logger.info(
            f"Run complete: {outcome.submitted}/{len(outcome.cycles)} submitted, "
            f"{colors['GREEN']}{outcome.landed}{colors['RESET']} landed, "
            f"{outcome.failed} failed cycles ({outcome.duration:.1f}s)"
        )
        return outcome
