"""
Execution Adapters
==================
The boundary between the pacing engine and whatever actually trades.

Two interchangeable strategies:
- per-trade execution (TradeExecutor): SwapExecutor routes each leg through
  the 0x swap API and signs/broadcasts it locally; DryRunExecutor simulates it
- whole-campaign execution (JobExecutor): the campaign is submitted to the
  remote service as one job and its progress is polled

A TradeExecutor never raises for a failed trade: failures come back as a
TradeResult with success=False and the failing step in the error text.
"""

import asyncio
import random
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from web3 import Web3

from .api_client import BackendClient
from .models import AdvancedMode, CampaignConfig, ProgressSnapshot, TradeDirection, TrendingMode
from .utils import (
    LookupUnavailable,
    TradeOperationFailed,
    TransportTimeout,
    VolumeCampaignError,
    format_tx_hash,
    logger,
    sanitize_error_message,
)
from .wallet import TradingWallet

ZEROX_API_BASE = "https://api.0x.org"
NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
MAX_UINT256 = 2**256 - 1


@dataclass(frozen=True)
class TradeResult:
    success: bool
    tx_reference: Optional[str] = None
    error: Optional[str] = None


class TradeExecutor(ABC):
    """Executes one buy or sell leg of a trade pair."""

    @abstractmethod
    async def execute_trade_operation(
        self,
        config: CampaignConfig,
        amount: float,
        direction: TradeDirection,
    ) -> TradeResult:
        ...


class DryRunExecutor(TradeExecutor):
    """Simulates legs with optional latency and a random failure rate."""

    def __init__(self, failure_rate: float = 0.0, latency: float = 0.0, rng: Optional[random.Random] = None):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self.latency = latency
        self.rng = rng or random.Random()

    async def execute_trade_operation(self, config, amount, direction):
        if self.latency:
            await asyncio.sleep(self.latency)

        if self.rng.random() < self.failure_rate:
            logger.info(f"[DRY RUN] Simulated {direction.value} failure")
            return TradeResult(success=False, error="Simulated failure")

        logger.info(f"[DRY RUN] Would {direction.value} {amount} of {config.token_address}")
        return TradeResult(success=True, tx_reference=f"DRYRUN-{uuid.uuid4().hex[:12]}")


class SwapExecutor(TradeExecutor):
    """
    Quote -> sign -> broadcast -> confirm, one leg at a time.

    Buys spend ``amount`` of the native token. Sells return the tokens bought
    by the previous buy leg (or the whole token balance when unknown). The
    confirmation wait is bounded by ``confirm_timeout``; when it elapses the
    leg is reported failed even though the transaction may still land.
    """

    def __init__(
        self,
        wallet: TradingWallet,
        api_key: Optional[str] = None,
        confirm_timeout: float = 30.0,
        request_timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.wallet = wallet
        self.confirm_timeout = confirm_timeout
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.headers = {"Accept": "application/json", "0x-version": "v2"}
        if api_key:
            self.headers["0x-api-key"] = api_key
        self._bought_units: Dict[str, int] = {}

    async def execute_trade_operation(self, config, amount, direction):
        # web3 and requests block; keep the event loop free for stop()
        return await asyncio.to_thread(self._execute, config, amount, direction)

    def _execute(self, config: CampaignConfig, amount: float, direction: TradeDirection) -> TradeResult:
        try:
            if direction is TradeDirection.BUY:
                sell_token, buy_token = NATIVE_TOKEN, config.token_address
                sell_units = int(Decimal(str(amount)) * 10**18)
            else:
                sell_token, buy_token = config.token_address, NATIVE_TOKEN
                sell_units = self._sell_units(config.token_address)
                if sell_units <= 0:
                    raise TradeOperationFailed("No token balance to sell", step="quote")

            quote = self._quote_or_fail(sell_token, buy_token, sell_units, config.slippage_bps)
            self._ensure_allowance(quote, sell_token, sell_units)
            tx_hash = self._sign_and_send(quote)
            self._confirm(tx_hash, "confirm")

        except TradeOperationFailed as e:
            logger.warning(f"{direction.value.capitalize()} failed: {e}")
            return TradeResult(success=False, error=sanitize_error_message(e))
        except Exception as e:
            logger.exception(f"{direction.value.capitalize()} failed unexpectedly")
            return TradeResult(success=False, error=sanitize_error_message(e))

        if direction is TradeDirection.BUY:
            self._bought_units[config.token_address.lower()] = int(quote.get("buyAmount") or 0)
        else:
            self._bought_units.pop(config.token_address.lower(), None)

        logger.info(f"{direction.value.capitalize()} confirmed: {format_tx_hash(tx_hash)}")
        return TradeResult(success=True, tx_reference=tx_hash)

    def _sell_units(self, token_address: str) -> int:
        bought = self._bought_units.get(token_address.lower())
        try:
            balance = self.wallet.get_token_balance_units(token_address)
        except Exception as e:
            raise TradeOperationFailed(f"Token balance read failed: {e}", step="quote")
        return min(bought, balance) if bought else balance

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(LookupUnavailable),
        reraise=True
    )
    def _get_quote(self, sell_token: str, buy_token: str, sell_units: int, slippage_bps: int) -> Dict[str, Any]:
        """Fetch an executable quote from the 0x allowance-holder endpoint."""
        params = {
            "chainId": self.wallet.chain_id,
            "sellToken": sell_token,
            "buyToken": buy_token,
            "sellAmount": str(sell_units),
            "slippageBps": str(slippage_bps),
            "taker": self.wallet.address,
        }
        try:
            response = self.session.get(
                f"{ZEROX_API_BASE}/swap/allowance-holder/quote",
                params=params,
                headers=self.headers,
                timeout=self.request_timeout
            )
        except requests.Timeout:
            raise TransportTimeout("Quote request", step="quote", timeout=self.request_timeout)
        except requests.RequestException as e:
            raise LookupUnavailable(f"Quote request failed: {e}")

        if response.status_code != 200:
            raise LookupUnavailable(f"0x API error {response.status_code}: {response.text[:200]}")
        try:
            quote = response.json()
        except ValueError as e:
            raise LookupUnavailable(f"0x API returned non-JSON quote: {e}")
        if not isinstance(quote, dict):
            raise LookupUnavailable("0x API returned an unexpected quote payload")
        return quote

    def _quote_or_fail(self, sell_token, buy_token, sell_units, slippage_bps) -> Dict[str, Any]:
        try:
            quote = self._get_quote(sell_token, buy_token, sell_units, slippage_bps)
        except TransportTimeout:
            raise
        except LookupUnavailable as e:
            raise TradeOperationFailed(str(e), step="quote")

        if not quote.get("liquidityAvailable", True):
            raise TradeOperationFailed("No liquidity for this pair", step="quote")
        if not quote.get("transaction"):
            raise TradeOperationFailed("No transaction data in quote", step="quote")
        return quote

    def _ensure_allowance(self, quote: Dict[str, Any], sell_token: str, sell_units: int):
        """Approve the quote's spender when the quote reports a missing allowance."""
        allowance_issue = (quote.get("issues") or {}).get("allowance")
        if sell_token == NATIVE_TOKEN or not allowance_issue:
            return

        try:
            spender = Web3.to_checksum_address(allowance_issue["spender"])
            token = self.wallet.token_contract(sell_token)
            tx = token.functions.approve(spender, MAX_UINT256).build_transaction({
                'from': self.wallet.address,
                'nonce': self.wallet.get_nonce(),
                'chainId': self.wallet.chain_id,
            })
            tx_hash = self.wallet.broadcast(self.wallet.sign_transaction(tx))
        except Exception as e:
            raise TradeOperationFailed(str(e), step="approve")

        self._confirm(tx_hash, "approve")
        logger.info(f"Approved {sell_units} units for {format_tx_hash(spender)}")

    def _confirm(self, tx_hash: str, step: str):
        """Wait for the receipt of ``tx_hash``; a missing or reverted receipt fails ``step``."""
        try:
            receipt = self.wallet.wait_for_confirmation(tx_hash, self.confirm_timeout)
        except TradeOperationFailed:
            raise
        except Exception as e:
            raise TradeOperationFailed(str(e), step=step)

        if receipt["status"] != 1:
            raise TradeOperationFailed(f"Transaction reverted ({format_tx_hash(tx_hash)})", step=step)

    def _sign_and_send(self, quote: Dict[str, Any]) -> str:
        transaction = quote["transaction"]
        try:
            tx = {
                'to': Web3.to_checksum_address(transaction["to"]),
                'data': transaction["data"],
                'value': int(transaction.get("value") or 0),
                'gas': int(transaction.get("gas") or 300000),
                'gasPrice': int(transaction.get("gasPrice") or self.wallet.web3.eth.gas_price),
                'nonce': self.wallet.get_nonce(),
                'chainId': self.wallet.chain_id,
            }
            signed = self.wallet.sign_transaction(tx)
        except Exception as e:
            raise TradeOperationFailed(str(e), step="sign")

        try:
            return self.wallet.broadcast(signed)
        except Exception as e:
            raise TradeOperationFailed(str(e), step="broadcast")


def build_job_request(
    config: CampaignConfig,
    user_wallet: str,
    use_jito: Optional[bool] = None,
    target_price_usd: Optional[float] = None,
) -> Dict[str, Any]:
    """Body of POST /run-volume-bot for ``config``."""
    body: Dict[str, Any] = {
        "user_wallet": user_wallet,
        "token_mint": config.token_address,
        "mode": config.mode.value,
        "num_makers": config.trade_count,
        "duration_hours": config.duration_minutes / 60,
        "trade_size_sol": config.trade_size,
        "slippage_pct": config.slippage_percent,
    }
    if target_price_usd is not None:
        body["target_price_usd"] = target_price_usd
    if use_jito is not None:
        body["use_jito"] = use_jito

    pacing = config.pacing
    if isinstance(pacing, AdvancedMode):
        body["custom_delay_min"] = pacing.delay_range.min_seconds
        body["custom_delay_max"] = pacing.delay_range.max_seconds
    elif isinstance(pacing, TrendingMode):
        body["selected_platforms"] = sorted(pacing.selection.platforms)
        body["trending_intensity"] = pacing.selection.intensity
    return body


class JobExecutor:
    """Delegates a whole campaign to the remote service."""

    def __init__(
        self,
        client: BackendClient,
        user_wallet: str,
        use_jito: Optional[bool] = None,
        target_price_usd: Optional[float] = None,
    ):
        self.client = client
        self.user_wallet = user_wallet
        self.use_jito = use_jito
        self.target_price_usd = target_price_usd

    async def submit_campaign_job(self, config: CampaignConfig) -> str:
        """Submit the campaign; returns the remote job id."""
        body = build_job_request(config, self.user_wallet, self.use_jito, self.target_price_usd)
        response = await asyncio.to_thread(self.client.run_volume_bot, body)

        if not response.job_id or response.status.lower() in ("error", "failed", "rejected"):
            raise VolumeCampaignError(f"Job submission rejected: {response.message or response.status}")

        logger.info(
            f"Job {response.job_id} accepted: ~{response.estimated_duration_hours:g}h, "
            f"~${response.estimated_volume_usd:,.0f} estimated volume"
        )
        return response.job_id

    async def poll_job_progress(self, job_id: str) -> ProgressSnapshot:
        return await asyncio.to_thread(self.client.get_bot_progress, job_id)

    async def cancel_job(self, job_id: str) -> bool:
        """Ask the service to stop ``job_id``; False when the request failed."""
        try:
            await asyncio.to_thread(self.client.stop_bot_job, job_id)
        except LookupUnavailable as e:
            logger.warning(f"Stop request for job {job_id} failed: {e}")
            return False
        return True
