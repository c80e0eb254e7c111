"""
Tests for configuration loading, CLI parameter mapping and cycle parameter validation.
"""
import json

import base58
import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from volume_bundler.config import BundlerConfig, load_config, load_wallet
from volume_bundler.constants import JITO_TIP_ACCOUNTS
from volume_bundler.main import build_estimator, build_parser, build_pool_provider, params_from_args
from volume_bundler.models import CycleParameters, VenueKind
from volume_bundler.pool_data import ConfigPoolDataProvider, SyntheticPoolDataProvider
from volume_bundler.pricing import ConstantProductEstimator, synthetic_estimate

ENV_VARS = [
    'RPC_URL', 'FALLBACK_RPC_URL', 'JITO_BLOCK_ENGINE_URL', 'KEYPAIRS_DIR', 'FUNDING_LAMPORTS',
    'FEE_RESERVE_LAMPORTS', 'DUST_THRESHOLD_LAMPORTS', 'SLIPPAGE_BPS', 'BLOCKHASH_MAX_RETRIES',
    'RETRY_BASE_DELAY_SEC', 'RETRY_MAX_DELAY_SEC', 'RESULT_TIMEOUT_SEC', 'TOKEN_PROGRAM_STRICT',
    'POOL_DATA_PROVIDER', 'TIP_ACCOUNTS', 'WALLET_PRIVATE_KEY', 'WALLET_PATH',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestBundlerConfig:
    """Tests for BundlerConfig.from_env."""

    def test_defaults(self):
        config = BundlerConfig.from_env({})

        assert config.funding_lamports == 1_200_000
        assert config.fee_reserve_lamports == 10_000
        assert config.slippage_bps == 500
        assert config.pool_data_provider == "config"
        assert config.tip_accounts == JITO_TIP_ACCOUNTS
        assert config.fallback_rpc_url is None

    def test_config_json_section(self):
        config = BundlerConfig.from_env({
            "bundler": {"funding_lamports": 2_000_000, "token_program_strict": True},
            "venues": {"constant_product_amm": {}},
        })

        assert config.funding_lamports == 2_000_000
        assert config.token_program_strict is True
        assert config.venues == {"constant_product_amm": {}}

    def test_env_overrides_config_json(self, monkeypatch):
        monkeypatch.setenv('FUNDING_LAMPORTS', '3000000')
        monkeypatch.setenv('TOKEN_PROGRAM_STRICT', 'yes')
        monkeypatch.setenv('POOL_DATA_PROVIDER', 'Synthetic')

        config = BundlerConfig.from_env({"bundler": {"funding_lamports": 2_000_000}})

        assert config.funding_lamports == 3_000_000
        assert config.token_program_strict is True
        assert config.pool_data_provider == "synthetic"

    def test_tip_accounts_from_env(self, monkeypatch):
        tip = Pubkey.new_unique()
        monkeypatch.setenv('TIP_ACCOUNTS', f" {tip} ,")

        assert BundlerConfig.from_env({}).tip_accounts == [tip]

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv('SLIPPAGE_BPS', 'lots')

        with pytest.raises(ValueError, match="SLIPPAGE_BPS must be an integer"):
            BundlerConfig.from_env({})

    def test_reserve_must_be_below_funding(self, monkeypatch):
        monkeypatch.setenv('FEE_RESERVE_LAMPORTS', '1200000')

        with pytest.raises(ValueError, match="FEE_RESERVE_LAMPORTS"):
            BundlerConfig.from_env({})

    def test_reserve_must_cover_signature_fees(self, monkeypatch):
        monkeypatch.setenv('FEE_RESERVE_LAMPORTS', '5000')

        with pytest.raises(ValueError, match="signature fees"):
            BundlerConfig.from_env({})

    def test_unknown_pool_provider(self, monkeypatch):
        monkeypatch.setenv('POOL_DATA_PROVIDER', 'chain')

        with pytest.raises(ValueError, match="POOL_DATA_PROVIDER"):
            BundlerConfig.from_env({})

    def test_pool_provider_selection(self):
        assert isinstance(build_pool_provider(BundlerConfig()), ConfigPoolDataProvider)
        assert isinstance(build_pool_provider(BundlerConfig(pool_data_provider="synthetic")), SyntheticPoolDataProvider)

    def test_estimator_from_reserves(self):
        config = BundlerConfig(reserves={"reserve_in": 1_000_000, "reserve_out": 2_000_000, "fee_bps": 0})

        estimator = build_estimator(config, 'live')

        assert isinstance(estimator, ConstantProductEstimator)
        assert estimator(1_000, Pubkey.new_unique()) == 1_998

    def test_synthetic_estimator_only_in_build_mode(self):
        assert build_estimator(BundlerConfig(), 'build') is synthetic_estimate
        assert build_estimator(BundlerConfig(), 'live') is None

    def test_load_config_reads_json(self, tmp_path):
        (tmp_path / 'config.json').write_text(json.dumps({"bundler": {"slippage_bps": 100}}))

        assert load_config(tmp_path) == {"bundler": {"slippage_bps": 100}}

    def test_load_config_missing_files(self, tmp_path):
        assert load_config(tmp_path) == {}


class TestLoadWallet:
    """Tests for main wallet loading."""

    def test_base58_private_key(self):
        keypair = Keypair()
        encoded = base58.b58encode(bytes(keypair)).decode('utf-8')

        assert load_wallet(encoded).pubkey() == keypair.pubkey()

    def test_json_key_file(self, tmp_path, monkeypatch):
        keypair = Keypair()
        path = tmp_path / 'main.json'
        path.write_text(json.dumps(list(bytes(keypair))))
        monkeypatch.setenv('WALLET_PATH', str(path))

        assert load_wallet().pubkey() == keypair.pubkey()

    def test_invalid_key(self):
        assert load_wallet("not-a-key") is None

    def test_no_key(self):
        assert load_wallet() is None


class TestCycleParameters:
    """Tests for CycleParameters validation and CLI mapping."""

    def test_cli_mapping(self):
        args = build_parser().parse_args([
            'live', '--market', 'M1', '--venue', 'curve', '--base-mint', 'B1',
            '--wallets', '3', '--min-sol', '0.01', '--max-sol', '0.05',
            '--cycles', '4', '--priority-level', '5',
        ])

        params = params_from_args(args, BundlerConfig(slippage_bps=300))

        assert args.mode == 'live'
        assert params.venue_kind == VenueKind.CURVE_AMM
        assert params.base_mint == 'B1'
        assert params.wallet_count == 3
        assert params.min_amount == 10_000_000
        assert params.max_amount == 50_000_000
        assert params.cycles == 4
        assert params.priority_fee_micro_lamports == 5_000
        assert params.slippage_bps == 300

    def test_default_mode_is_build(self):
        args = build_parser().parse_args(['--market', 'M1'])

        assert args.mode == 'build'
        assert params_from_args(args, BundlerConfig()).venue_kind is None

    @pytest.mark.parametrize("kwargs", [
        {"wallet_count": 0},
        {"wallet_count": 5},
        {"min_amount": 0},
        {"min_amount": 20, "max_amount": 10},
        {"cycles": 0},
        {"tip_lamports": -1},
        {"slippage_bps": 10_000},
    ])
    def test_invalid_parameters(self, kwargs):
        values = {"market_id": "M1", "min_amount": 10, "max_amount": 20}
        values.update(kwargs)

        with pytest.raises(ValueError):
            CycleParameters(**values)

    def test_priority_level_bounds(self):
        assert CycleParameters.priority_level_to_micro_lamports(1) == 1_000
        assert CycleParameters.priority_level_to_micro_lamports(1000) == 1_000_000
        with pytest.raises(ValueError):
            CycleParameters.priority_level_to_micro_lamports(0)
        with pytest.raises(ValueError):
            CycleParameters.priority_level_to_micro_lamports(1001)
