"""
Bundle relay clients: Jito block engine JSON-RPC and an offline dry-run stand-in.
"""
import asyncio
import hashlib
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from .errors import BundleResultError, BundleSubmissionError
from .models import BundleResult, TransactionEnvelope
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_ENGINE_URL = "https://mainnet.block-engine.jito.wtf"

ResultCallback = Callable[[BundleResult], Any]
FailureCallback = Callable[[BundleResultError], Any]


async def _call(callback: Optional[Callable], arg) -> None:
    if callback is None:
        return
    outcome = callback(arg)
    if inspect.isawaitable(outcome):
        await outcome


class BundleClient(ABC):
    """
    Relay interface.

    submit() returns once the relay accepted the bundle; observe() and
    on_result() report the eventual outcome from a background task that
    always finishes within `result_timeout` seconds.
    """

    result_timeout: float = 30.0

    @abstractmethod
    async def submit(self, envelopes: Sequence[TransactionEnvelope]) -> str:
        pass

    @abstractmethod
    async def _wait_for_result(self, bundle_id: str) -> BundleResult:
        pass

    async def _observe(self, bundle_id: str) -> BundleResult:
        try:
            return await asyncio.wait_for(self._wait_for_result(bundle_id), timeout=self.result_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{colors['YELLOW']}No result for bundle {bundle_id[:8]} within {self.result_timeout}s{colors['RESET']}"
            )
            return BundleResult(bundle_id=bundle_id, status="unknown", error=f"no result within {self.result_timeout}s")

    def observe(self, bundle_id: str) -> "asyncio.Task[BundleResult]":
        """
        Start observing a submitted bundle.

        Returns:
            Task resolving to a landed / unknown BundleResult, or raising
            BundleResultError if the relay reports the bundle failed
            (status "failed") or no longer knows it (status "unknown")
        """
        return asyncio.ensure_future(self._observe(bundle_id))

    def on_result(
        self,
        bundle_id: str,
        on_success: Optional[ResultCallback] = None,
        on_failure: Optional[FailureCallback] = None
    ) -> "asyncio.Task[BundleResult]":
        """
        Observe a bundle and deliver the outcome to callbacks.

        on_success gets the landed (or simulated) BundleResult. on_failure
        gets a BundleResultError whose status is "failed" or "unknown".
        Callbacks may be plain functions or coroutines.

        Returns:
            Task resolving to the final BundleResult (never raises BundleResultError)
        """
        async def _run() -> BundleResult:
            try:
                result = await self._observe(bundle_id)
            except BundleResultError as e:
                await _call(on_failure, e)
                return BundleResult(bundle_id=bundle_id, status=e.status, error=e.reason)

            if result.status == "unknown":
                await _call(on_failure, BundleResultError(bundle_id, result.error or "timeout", status="unknown"))
            else:
                await _call(on_success, result)
            return result

        return asyncio.ensure_future(_run())

    async def close(self):
        pass


class JitoBundleClient(BundleClient):
    """Jito block engine client (sendBundle / getInflightBundleStatuses)."""

    def __init__(
        self,
        block_engine_url: str = DEFAULT_BLOCK_ENGINE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        solana_client=None,
        result_timeout: float = 30.0,
        poll_interval: float = 1.0,
        timeout: float = 10.0
    ):
        """
        Args:
            block_engine_url: Block engine base URL
            http_client: Optional preconfigured httpx client (tests pass a MockTransport-backed one)
            solana_client: Optional SolanaClient used to look up compute units of landed bundles
            result_timeout: Seconds to wait for a landed / failed status before reporting "unknown"
            poll_interval: Seconds between status polls
            timeout: HTTP request timeout
        """
        self.url = block_engine_url.rstrip('/') + "/api/v1/bundles"
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=timeout)
        self.solana = solana_client
        self.result_timeout = result_timeout
        self.poll_interval = poll_interval
        self._request_id = 0
        self._signatures: Dict[str, List[str]] = {}

    async def _rpc(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        response = await self.http.post(self.url, json=payload)
        response.raise_for_status()
        body = response.json()
        if body.get("error"):
            error = body["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise BundleSubmissionError(f"{method} rejected: {message}")
        return body.get("result")

    async def submit(self, envelopes: Sequence[TransactionEnvelope]) -> str:
        """
        Send signed envelopes as one bundle.

        Returns:
            Bundle id assigned by the block engine

        Raises:
            BundleSubmissionError: Relay rejected the bundle or was unreachable
        """
        if not envelopes:
            raise BundleSubmissionError("Cannot submit an empty bundle")
        try:
            bundle_id = await self._rpc("sendBundle", [[e.base64 for e in envelopes], {"encoding": "base64"}])
        except BundleSubmissionError:
            raise
        except (httpx.HTTPError, ValueError) as e:
            raise BundleSubmissionError(f"sendBundle failed: {e}") from e

        if not isinstance(bundle_id, str) or not bundle_id:
            raise BundleSubmissionError(f"sendBundle returned no bundle id: {bundle_id!r}")

        self._signatures[bundle_id] = [e.signature for e in envelopes]
        logger.info(
            f"Bundle submitted: {colors['CYAN']}{bundle_id[:8]}{colors['RESET']} "
            f"({colors['GREEN']}{len(envelopes)}{colors['RESET']} transactions)"
        )
        return bundle_id

    async def get_inflight_status(self, bundle_id: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc("getInflightBundleStatuses", [[bundle_id]])
        values = (result or {}).get("value") or []
        return values[0] if values else None

    async def _compute_units(self, bundle_id: str) -> Optional[int]:
        if self.solana is None:
            return None
        total = 0
        for signature in self._signatures.get(bundle_id, []):
            units = await self.solana.get_compute_units_consumed(signature)
            if units is None:
                return None
            total += units
        return total

    async def _wait_for_result(self, bundle_id: str) -> BundleResult:
        while True:
            try:
                status = await self.get_inflight_status(bundle_id)
            except (httpx.HTTPError, BundleSubmissionError, ValueError) as e:
                logger.debug(f"Status poll for {bundle_id[:8]} failed: {e}")
                status = None

            state = status.get("status") if status else None
            if state == "Landed":
                slot = status.get("landed_slot")
                units = await self._compute_units(bundle_id)
                self._signatures.pop(bundle_id, None)
                logger.info(
                    f"{colors['GREEN']}Bundle {bundle_id[:8]} landed{colors['RESET']} in slot {slot}"
                    + (f", {units} CU" if units is not None else "")
                )
                return BundleResult(bundle_id=bundle_id, status="landed", landing_slot=slot, compute_consumed=units)
            if state == "Failed":
                self._signatures.pop(bundle_id, None)
                reason = "dropped, no connected leader up soon"
                logger.warning(f"{colors['RED']}Bundle {bundle_id[:8]} failed{colors['RESET']}: {reason}")
                raise BundleResultError(bundle_id, reason)
            if state == "Invalid":
                # Outside the relay lookback window, outcome not known
                self._signatures.pop(bundle_id, None)
                reason = "not found in block engine lookback window"
                logger.warning(f"{colors['YELLOW']}Bundle {bundle_id[:8]} invalid{colors['RESET']}: {reason}")
                raise BundleResultError(bundle_id, reason, status="unknown")

            await asyncio.sleep(self.poll_interval)

    async def close(self):
        if self._owns_http:
            await self.http.aclose()


class DryRunBundleClient(BundleClient):
    """
    Offline relay for build mode: logs the bundle and reports it as simulated.
    """

    def __init__(self):
        self.submitted: Dict[str, List[str]] = {}

    async def submit(self, envelopes: Sequence[TransactionEnvelope]) -> str:
        if not envelopes:
            raise BundleSubmissionError("Cannot submit an empty bundle")
        encoded = [e.base64 for e in envelopes]
        bundle_id = hashlib.sha256("".join(e.signature for e in envelopes).encode()).hexdigest()
        self.submitted[bundle_id] = encoded
        total_bytes = sum(len(e.wire_bytes) for e in envelopes)
        logger.info(
            f"{colors['DIM']}[dry-run] bundle {bundle_id[:8]} not sent: "
            f"{len(envelopes)} transactions, {total_bytes} bytes{colors['RESET']}"
        )
        return bundle_id

    async def _wait_for_result(self, bundle_id: str) -> BundleResult:
        return BundleResult(bundle_id=bundle_id, status="simulated")
