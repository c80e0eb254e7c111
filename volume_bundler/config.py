"""
Configuration from .env (environment) and config.json.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import base58
import dotenv
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .bundle_client import DEFAULT_BLOCK_ENGINE_URL
from .constants import (
    DEFAULT_DUST_THRESHOLD_LAMPORTS,
    DEFAULT_FEE_RESERVE_LAMPORTS,
    DEFAULT_FUNDING_LAMPORTS,
    DEFAULT_SLIPPAGE_BPS,
    JITO_TIP_ACCOUNTS,
)
from .wallet_manager import minimum_fee_reserve

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent


def load_config(root: Optional[Path] = None) -> Dict[str, Any]:
    """Load .env into the environment and return config.json (or {})."""
    root = root or PROJECT_ROOT
    env_path = root / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.warning(f".env file not found at {env_path}")

    config_path = root / 'config.json'
    if config_path.exists():
        with open(config_path, 'r') as f:
            return json.load(f)
    logger.warning(f"config.json not found at {config_path}")
    return {}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BundlerConfig:
    """Runtime settings. Environment variables take precedence over config.json."""
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    fallback_rpc_url: Optional[str] = None
    block_engine_url: str = DEFAULT_BLOCK_ENGINE_URL
    keypairs_dir: Path = Path("keypairs")
    funding_lamports: int = DEFAULT_FUNDING_LAMPORTS
    fee_reserve_lamports: int = DEFAULT_FEE_RESERVE_LAMPORTS
    dust_threshold_lamports: int = DEFAULT_DUST_THRESHOLD_LAMPORTS
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    blockhash_max_retries: int = 5
    retry_base_delay: float = 0.5
    retry_max_delay: float = 5.0
    result_timeout: float = 30.0
    token_program_strict: bool = False
    pool_data_provider: str = "config"
    tip_accounts: List[Pubkey] = field(default_factory=lambda: list(JITO_TIP_ACCOUNTS))
    venues: Dict[str, Any] = field(default_factory=dict)
    reserves: Optional[Dict[str, int]] = None  # {"reserve_in", "reserve_out", "fee_bps"} for ConstantProductEstimator

    def __post_init__(self):
        if self.fee_reserve_lamports >= self.funding_lamports:
            raise ValueError(
                f"FEE_RESERVE_LAMPORTS ({self.fee_reserve_lamports}) must be below "
                f"FUNDING_LAMPORTS ({self.funding_lamports})"
            )
        if self.fee_reserve_lamports < minimum_fee_reserve():
            raise ValueError(
                f"FEE_RESERVE_LAMPORTS ({self.fee_reserve_lamports}) must cover the swap envelope "
                f"signature fees ({minimum_fee_reserve()})"
            )
        if self.pool_data_provider not in ("config", "synthetic"):
            raise ValueError(f"POOL_DATA_PROVIDER must be 'config' or 'synthetic', got {self.pool_data_provider!r}")
        if not self.tip_accounts:
            raise ValueError("At least one tip account is required")

    @classmethod
    def from_env(cls, config: Optional[Dict[str, Any]] = None) -> "BundlerConfig":
        """Build settings from environment variables and a config.json dict."""
        config = config or {}
        bundler = config.get('bundler', {})

        tip_accounts_env = os.getenv('TIP_ACCOUNTS')
        if tip_accounts_env:
            tip_accounts = [Pubkey.from_string(a.strip()) for a in tip_accounts_env.split(',') if a.strip()]
        elif bundler.get('tip_accounts'):
            tip_accounts = [Pubkey.from_string(a) for a in bundler['tip_accounts']]
        else:
            tip_accounts = list(JITO_TIP_ACCOUNTS)

        return cls(
            rpc_url=os.getenv('RPC_URL', 'https://api.mainnet-beta.solana.com'),
            fallback_rpc_url=os.getenv('FALLBACK_RPC_URL') or None,
            block_engine_url=os.getenv('JITO_BLOCK_ENGINE_URL', DEFAULT_BLOCK_ENGINE_URL),
            keypairs_dir=Path(os.getenv('KEYPAIRS_DIR', bundler.get('keypairs_dir', 'keypairs'))),
            funding_lamports=_env_int('FUNDING_LAMPORTS', bundler.get('funding_lamports', DEFAULT_FUNDING_LAMPORTS)),
            fee_reserve_lamports=_env_int('FEE_RESERVE_LAMPORTS', bundler.get('fee_reserve_lamports', DEFAULT_FEE_RESERVE_LAMPORTS)),
            dust_threshold_lamports=_env_int('DUST_THRESHOLD_LAMPORTS', bundler.get('dust_threshold_lamports', DEFAULT_DUST_THRESHOLD_LAMPORTS)),
            slippage_bps=_env_int('SLIPPAGE_BPS', bundler.get('slippage_bps', DEFAULT_SLIPPAGE_BPS)),
            blockhash_max_retries=_env_int('BLOCKHASH_MAX_RETRIES', bundler.get('blockhash_max_retries', 5)),
            retry_base_delay=_env_float('RETRY_BASE_DELAY_SEC', bundler.get('retry_base_delay', 0.5)),
            retry_max_delay=_env_float('RETRY_MAX_DELAY_SEC', bundler.get('retry_max_delay', 5.0)),
            result_timeout=_env_float('RESULT_TIMEOUT_SEC', bundler.get('result_timeout', 30.0)),
            token_program_strict=_env_bool('TOKEN_PROGRAM_STRICT', bundler.get('token_program_strict', False)),
            pool_data_provider=os.getenv('POOL_DATA_PROVIDER', bundler.get('pool_data_provider', 'config')).lower(),
            tip_accounts=tip_accounts,
            venues=config.get('venues', {}),
            reserves=bundler.get('reserves'),
        )


def load_wallet(private_key_str: Optional[str] = None, wallet_path: Optional[str] = None) -> Optional[Keypair]:
    """
    Load the main wallet.

    Accepts a base58 secret key (WALLET_PRIVATE_KEY) or a JSON byte-array
    key file (WALLET_PATH), in that order.
    """
    if not private_key_str:
        private_key_str = os.getenv('WALLET_PRIVATE_KEY')
    if not wallet_path:
        wallet_path = os.getenv('WALLET_PATH')

    try:
        if private_key_str:
            return Keypair.from_bytes(base58.b58decode(private_key_str.strip()))
        if wallet_path:
            with open(wallet_path, 'r') as f:
                return Keypair.from_bytes(bytes(json.load(f)))
    except Exception as e:
        logger.error(f"Error loading wallet: {e}")
        return None

    logger.warning("No wallet private key provided")
    return None
