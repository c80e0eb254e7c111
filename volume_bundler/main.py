"""
Main entry point for the Solana volume bundler.
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

from solders.keypair import Keypair

from .builders import builder_registry
from .bundle_assembler import BundleAssembler
from .bundle_client import BundleClient, DryRunBundleClient, JitoBundleClient
from .config import BundlerConfig, load_config, load_wallet
from .errors import BalanceInsufficientError
from .models import CycleParameters, VenueKind
from .orchestrator import VolumeCycleOrchestrator
from .pool_data import ConfigPoolDataProvider, PoolDataProvider, SyntheticPoolDataProvider
from .pricing import ConstantProductEstimator, PriceEstimator, synthetic_estimate
from .retry import RetryExecutor, RetryPolicy
from .solana_client import SolanaClient
from .token_program import TokenProgramResolver
from .utils import get_terminal_colors
from .venue_resolver import VenueResolver
from .wallet_manager import EphemeralWalletManager

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

VENUE_CHOICES = {
    'curve': VenueKind.CURVE_AMM,
    'cpmm': VenueKind.CONSTANT_PRODUCT_AMM,
    'orderbook': VenueKind.ORDER_BOOK,
}


def setup_logging(level: int = logging.INFO):
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('volume_bundler.log')
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Solana multi-wallet volume bundler')
    parser.add_argument(
        'mode',
        nargs='?',
        default='build',
        choices=['build', 'live', 'recover'],
        help='build (default): assemble and sign bundles without sending; live: submit to the block engine; '
             'recover: sweep persisted ephemeral wallets of a market back to the main wallet'
    )
    parser.add_argument('--market', required=True, help='Pool / market id (base58)')
    parser.add_argument('--venue', choices=sorted(VENUE_CHOICES), help='Venue hint; "curve" requires --base-mint')
    parser.add_argument('--base-mint', help='Base token mint (CurveAMM pools)')
    parser.add_argument('--wallets', type=int, default=2, help='Ephemeral wallets per cycle (1-4)')
    parser.add_argument('--min-sol', type=float, default=0.01, help='Minimum swap size in SOL')
    parser.add_argument('--max-sol', type=float, default=0.02, help='Maximum swap size in SOL')
    parser.add_argument('--cycles', type=int, default=1, help='Number of cycles')
    parser.add_argument('--delay', type=float, default=5.0, help='Seconds between cycles (±30%% jitter)')
    parser.add_argument('--tip-lamports', type=int, default=10_000, help='Block engine tip per bundle')
    parser.add_argument('--priority-level', type=int, default=1, help='Priority level 1-1000 (x1000 microlamports per CU)')
    parser.add_argument('--debug', action='store_true', help='Debug logging')
    return parser


def params_from_args(args: argparse.Namespace, config: BundlerConfig) -> CycleParameters:
    """Translate CLI arguments into validated cycle parameters."""
    return CycleParameters(
        market_id=args.market,
        venue_kind=VENUE_CHOICES.get(args.venue) if args.venue else None,
        base_mint=args.base_mint,
        wallet_count=args.wallets,
        min_amount=round(args.min_sol * 1e9),
        max_amount=round(args.max_sol * 1e9),
        delay_seconds=args.delay,
        tip_lamports=args.tip_lamports,
        priority_fee_micro_lamports=CycleParameters.priority_level_to_micro_lamports(args.priority_level),
        cycles=args.cycles,
        slippage_bps=config.slippage_bps,
    )


def build_pool_provider(config: BundlerConfig) -> PoolDataProvider:
    if config.pool_data_provider == 'synthetic':
        return SyntheticPoolDataProvider()
    return ConfigPoolDataProvider(config.venues)


def build_estimator(config: BundlerConfig, mode: str) -> Optional[PriceEstimator]:
    """
    Pick the swap output estimator.

    Operator-supplied reserves give a constant-product estimate. The
    synthetic estimator is only allowed when nothing is sent (build mode).

    Returns:
        Estimator, or None if live mode has no reserve data
    """
    if config.reserves:
        return ConstantProductEstimator(
            reserve_in=int(config.reserves['reserve_in']),
            reserve_out=int(config.reserves['reserve_out']),
            fee_bps=int(config.reserves.get('fee_bps', 25)),
        )
    if mode == 'live':
        return None
    logger.warning(f"{colors['YELLOW']}No reserves configured: using synthetic price estimates{colors['RESET']}")
    return synthetic_estimate


def build_orchestrator(
    config: BundlerConfig,
    solana: SolanaClient,
    wallet: Keypair,
    bundle_client: BundleClient,
    estimator: PriceEstimator,
    cancel_event: Optional[asyncio.Event] = None
) -> VolumeCycleOrchestrator:
    """Wire the components for a run."""
    token_programs = TokenProgramResolver(solana, strict=config.token_program_strict)
    wallet_manager = EphemeralWalletManager(
        config.keypairs_dir,
        funding_lamports=config.funding_lamports,
        fee_reserve_lamports=config.fee_reserve_lamports,
        dust_threshold_lamports=config.dust_threshold_lamports,
    )
    retry = RetryExecutor(
        RetryPolicy(base_delay=config.retry_base_delay, max_delay=config.retry_max_delay),
        cancel_event=cancel_event,
    )
    assembler = BundleAssembler(
        solana,
        wallet_manager,
        VenueResolver(build_pool_provider(config)),
        token_programs,
        builder_registry(token_programs),
        estimator,
        retry=retry,
        tip_accounts=config.tip_accounts,
        blockhash_policy=RetryPolicy(
            max_retries=config.blockhash_max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        ),
    )
    return VolumeCycleOrchestrator(solana, wallet, wallet_manager, assembler, bundle_client)


def _install_cancel_handler(cancel_event: asyncio.Event):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig} not supported on this platform")


async def main(args: Optional[argparse.Namespace] = None, raw_config: Optional[Dict[str, Any]] = None) -> int:
    """
    Main function.

    Returns:
        Process exit code
    """
    if args is None:
        args = build_parser().parse_args()
    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    logger.info("Starting Solana volume bundler")

    config = BundlerConfig.from_env(raw_config if raw_config is not None else load_config())
    wallet = load_wallet()
    if wallet is None:
        logger.error("Main wallet required (WALLET_PRIVATE_KEY or WALLET_PATH)")
        return 1

    solana = SolanaClient(config.rpc_url, wallet, fallback_rpc_url=config.fallback_rpc_url)
    bundle_client: BundleClient
    if args.mode == 'live':
        bundle_client = JitoBundleClient(
            config.block_engine_url, solana_client=solana, result_timeout=config.result_timeout
        )
    else:
        bundle_client = DryRunBundleClient()

    try:
        if args.mode == 'recover':
            logger.info(f"Mode: {colors['CYAN']}RECOVER{colors['RESET']}")
            manager = EphemeralWalletManager(
                config.keypairs_dir,
                funding_lamports=config.funding_lamports,
                fee_reserve_lamports=config.fee_reserve_lamports,
                dust_threshold_lamports=config.dust_threshold_lamports,
            )
            swept = await manager.recover(args.market, wallet.pubkey(), solana)
            logger.info(f"Recovered {sum(amount for _, amount in swept)} lamports from {len(swept)} wallets")
            return 0

        params = params_from_args(args, config)
        if args.mode == 'live' and config.pool_data_provider == 'synthetic':
            logger.error("Synthetic pool data cannot be used in live mode")
            return 1
        estimator = build_estimator(config, args.mode)
        if estimator is None:
            logger.error("Live mode requires bundler.reserves in config.json for min-output estimates")
            return 1
        if args.mode == 'live':
            logger.info(f"Mode: {colors['RED']}LIVE{colors['RESET']} (bundles are submitted)")
            logger.warning("=" * 60)
            logger.warning("LIVE MODE ENABLED - REAL TRANSACTIONS WILL BE SENT!")
            logger.warning("=" * 60)
            logger.warning("Starting live mode in 3 seconds... Press Ctrl+C to cancel")
            await asyncio.sleep(3)
        else:
            logger.info(f"Mode: {colors['CYAN']}BUILD{colors['RESET']} (dry run, nothing is sent)")

        cancel_event = asyncio.Event()
        _install_cancel_handler(cancel_event)
        orchestrator = build_orchestrator(config, solana, wallet, bundle_client, estimator, cancel_event)
        try:
            outcome = await orchestrator.run(params, cancel_event)
        except BalanceInsufficientError as e:
            logger.error(f"{colors['RED']}Aborting run: {e}{colors['RESET']}")
            return 2
        return 0 if outcome.failed == 0 else 3

    finally:
        await bundle_client.close()
        await solana.close()
        logger.info("Bundler stopped")


if __name__ == '__main__':
    sys.exit(asyncio.run(main()))
