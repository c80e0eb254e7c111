"""
Classifies a market id into a venue kind and fetches its descriptor.
"""
import logging
from typing import Dict, Optional, Tuple

from solders.pubkey import Pubkey

from .errors import InstructionBuildError, VenueResolutionError
from .models import VenueDescriptor, VenueKind
from .pool_data import PoolDataProvider
from .utils import get_terminal_colors, short_key

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


def _to_pubkey(value, what: str) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(value)
    except Exception as e:
        raise VenueResolutionError(f"Invalid {what} {str(value)[:8]}: {e}") from e


class VenueResolver:
    """
    Resolves venues through a PoolDataProvider.

    Resolution order: CurveAMM when hinted (base mint required), otherwise
    ConstantProductAMM, then OrderBook. Descriptors are immutable, so
    results are memoised per (kind hint, market id, base mint) when
    `cache` is enabled.
    """

    def __init__(self, provider: PoolDataProvider, cache: bool = True):
        self.provider = provider
        self.cache_enabled = cache
        self._cache: Dict[Tuple[Optional[VenueKind], str, Optional[str]], VenueDescriptor] = {}

    async def resolve(
        self,
        market_id: str,
        venue_kind: Optional[VenueKind] = None,
        base_mint: Optional[str] = None
    ) -> VenueDescriptor:
        """
        Resolve a market id into a venue descriptor.

        Args:
            market_id: Pool / market address (base58)
            venue_kind: Optional hint; only CURVE_AMM changes the lookup path
            base_mint: Base token mint, required for CURVE_AMM

        Returns:
            CurvePoolDescriptor, CpmmPoolDescriptor or OrderBookPoolDescriptor

        Raises:
            InstructionBuildError: CURVE_AMM hint without base_mint
            VenueResolutionError: Market id matches no supported venue
        """
        key = (venue_kind if venue_kind == VenueKind.CURVE_AMM else None, str(market_id), base_mint)
        if self.cache_enabled and key in self._cache:
            return self._cache[key]

        if venue_kind == VenueKind.CURVE_AMM:
            descriptor = await self._resolve_curve(market_id, base_mint)
        else:
            descriptor = await self._classify(market_id)

        if self.cache_enabled:
            self._cache[key] = descriptor
        return descriptor

    async def _resolve_curve(self, market_id: str, base_mint: Optional[str]) -> VenueDescriptor:
        if not base_mint:
            raise InstructionBuildError(f"CurveAMM mode requires a base mint (market {str(market_id)[:8]})")
        mint = _to_pubkey(base_mint, "base mint")
        try:
            descriptor = await self.provider.fetch_curve_pool(mint)
        except Exception as e:
            raise VenueResolutionError(f"No CurveAMM pool for mint {short_key(mint)}: {e}") from e
        logger.info(f"Resolved {colors['CYAN']}CurveAMM{colors['RESET']} pool for mint {short_key(mint)}")
        return descriptor

    async def _classify(self, market_id: str) -> VenueDescriptor:
        market = _to_pubkey(market_id, "market id")

        try:
            descriptor = await self.provider.fetch_cpmm_pool(market)
            logger.info(f"Resolved {colors['CYAN']}ConstantProductAMM{colors['RESET']} pool {short_key(market)}")
            return descriptor
        except Exception as cpmm_error:
            logger.debug(f"{short_key(market)} is not a CPMM pool ({cpmm_error}), trying order book")
            try:
                descriptor = await self.provider.fetch_orderbook_pool(market)
            except Exception as book_error:
                raise VenueResolutionError(
                    f"Market {short_key(market)} is neither a CPMM pool ({cpmm_error}) "
                    f"nor an order book pool ({book_error})"
                ) from book_error

        logger.info(f"Resolved {colors['CYAN']}OrderBook{colors['RESET']} pool for market {short_key(market)}")
        return descriptor
