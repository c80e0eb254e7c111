"""
Pool metadata providers used by the venue resolver.

A provider turns a market id (or base mint) into a venue descriptor.
ConfigPoolDataProvider reads operator-supplied descriptors from
config.json. SyntheticPoolDataProvider derives placeholder addresses from
hashes for dry runs and tests only; it never reads chain state and its
descriptors must not be submitted.
"""
import dataclasses
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from solders.pubkey import Pubkey

from .constants import NATIVE_MINT
from .models import CpmmPoolDescriptor, CurvePoolDescriptor, OrderBookPoolDescriptor
from .utils import get_terminal_colors, short_key

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


class PoolNotFoundError(LookupError):
    """Provider has no pool of the requested kind for this id."""


class PoolDataProvider(ABC):
    """Interface for venue metadata lookups."""

    @abstractmethod
    async def fetch_curve_pool(self, base_mint: Pubkey) -> CurvePoolDescriptor:
        pass

    @abstractmethod
    async def fetch_cpmm_pool(self, pool_id: Pubkey) -> CpmmPoolDescriptor:
        pass

    @abstractmethod
    async def fetch_orderbook_pool(self, market_id: Pubkey) -> OrderBookPoolDescriptor:
        pass


def _descriptor_from_dict(cls: Type, data: Dict[str, Any]):
    """Build a descriptor dataclass from a JSON dict of base58 strings."""
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name == "fee_bps":
            kwargs[f.name] = int(value)
        elif value is None:
            kwargs[f.name] = None
        else:
            kwargs[f.name] = Pubkey.from_string(value)
    unknown = set(data) - {f.name for f in dataclasses.fields(cls)}
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} fields: {sorted(unknown)}")
    return cls(**kwargs)


class ConfigPoolDataProvider(PoolDataProvider):
    """
    Descriptors supplied in config.json under "venues".

    Example:
        {"venues": {
            "curve_amm": {"<base mint>": {"address": "...", ...}},
            "constant_product_amm": {"<pool id>": {"config_id": "...", ...}},
            "order_book": {"<market id>": {"amm_id": "...", ...}}
        }}

    For constant_product_amm the dict key is used as pool_id, for
    order_book as market_id and for curve_amm as base_mint, unless the
    entry sets those fields itself.
    """

    def __init__(self, venues: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        venues = venues or {}
        self._curve = venues.get("curve_amm", {})
        self._cpmm = venues.get("constant_product_amm", {})
        self._order_book = venues.get("order_book", {})
        logger.info(
            f"Loaded venue config: curve={len(self._curve)} cpmm={len(self._cpmm)} "
            f"order_book={len(self._order_book)}"
        )

    async def fetch_curve_pool(self, base_mint: Pubkey) -> CurvePoolDescriptor:
        entry = self._curve.get(str(base_mint))
        if entry is None:
            raise PoolNotFoundError(f"No curve pool configured for mint {short_key(base_mint)}")
        return _descriptor_from_dict(CurvePoolDescriptor, {"base_mint": str(base_mint), **entry})

    async def fetch_cpmm_pool(self, pool_id: Pubkey) -> CpmmPoolDescriptor:
        entry = self._cpmm.get(str(pool_id))
        if entry is None:
            raise PoolNotFoundError(f"No CPMM pool configured for {short_key(pool_id)}")
        return _descriptor_from_dict(CpmmPoolDescriptor, {"pool_id": str(pool_id), **entry})

    async def fetch_orderbook_pool(self, market_id: Pubkey) -> OrderBookPoolDescriptor:
        entry = self._order_book.get(str(market_id))
        if entry is None:
            raise PoolNotFoundError(f"No order book pool configured for {short_key(market_id)}")
        return _descriptor_from_dict(OrderBookPoolDescriptor, {"market_id": str(market_id), **entry})


class SyntheticPoolDataProvider(PoolDataProvider):
    """
    Deterministic placeholder descriptors derived from sha256(id || label).

    Same id always yields the same descriptor. Ids listed in
    `order_book_markets` are reported as not being CPMM pools so the
    resolver falls through to the order book path.
    """

    def __init__(self, order_book_markets=()):
        self.order_book_markets = {str(m) for m in order_book_markets}
        logger.warning(
            f"{colors['YELLOW']}Using synthetic pool data: descriptors are placeholders, "
            f"do not submit bundles built from them{colors['RESET']}"
        )

    @staticmethod
    def _derive(seed: Pubkey, label: str) -> Pubkey:
        return Pubkey(hashlib.sha256(bytes(seed) + label.encode()).digest())

    async def fetch_curve_pool(self, base_mint: Pubkey) -> CurvePoolDescriptor:
        return CurvePoolDescriptor(
            address=self._derive(base_mint, "pool"),
            authority=self._derive(base_mint, "authority"),
            base_vault=self._derive(base_mint, "base_vault"),
            quote_vault=self._derive(base_mint, "quote_vault"),
            base_mint=base_mint,
            quote_mint=NATIVE_MINT,
            fee_account=self._derive(base_mint, "fee_account"),
        )

    async def fetch_cpmm_pool(self, pool_id: Pubkey) -> CpmmPoolDescriptor:
        if str(pool_id) in self.order_book_markets:
            raise PoolNotFoundError(f"{short_key(pool_id)} is not a CPMM pool")
        token_mint = self._derive(pool_id, "token_mint")
        # Low bit of the pool id hash decides which slot holds the native mint
        native_is_a = hashlib.sha256(bytes(pool_id)).digest()[0] & 1 == 0
        return CpmmPoolDescriptor(
            pool_id=pool_id,
            config_id=self._derive(pool_id, "config"),
            mint_a=NATIVE_MINT if native_is_a else token_mint,
            mint_b=token_mint if native_is_a else NATIVE_MINT,
            vault_a=self._derive(pool_id, "vault_a"),
            vault_b=self._derive(pool_id, "vault_b"),
            observation_id=self._derive(pool_id, "observation"),
        )

    async def fetch_orderbook_pool(self, market_id: Pubkey) -> OrderBookPoolDescriptor:
        return OrderBookPoolDescriptor(
            amm_id=self._derive(market_id, "amm"),
            authority=self._derive(market_id, "authority"),
            open_orders=self._derive(market_id, "open_orders"),
            target_orders=self._derive(market_id, "target_orders"),
            base_mint=self._derive(market_id, "base_mint"),
            quote_mint=NATIVE_MINT,
            base_vault=self._derive(market_id, "base_vault"),
            quote_vault=self._derive(market_id, "quote_vault"),
            market_id=market_id,
            bids=self._derive(market_id, "bids"),
            asks=self._derive(market_id, "asks"),
            event_queue=self._derive(market_id, "event_queue"),
            market_base_vault=self._derive(market_id, "market_base_vault"),
            market_quote_vault=self._derive(market_id, "market_quote_vault"),
            market_authority=self._derive(market_id, "market_authority"),
        )
