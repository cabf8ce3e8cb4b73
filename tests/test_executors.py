"""Tests for the execution adapters (wallet, HTTP session and service mocked)."""

import asyncio
import random
from unittest.mock import MagicMock, patch

import pytest
import requests

from volume_campaign.api_client import BotJobResponse
from volume_campaign.executors import (
    NATIVE_TOKEN,
    DryRunExecutor,
    JobExecutor,
    SwapExecutor,
    build_job_request,
)
from volume_campaign.models import (
    AdvancedMode,
    DelayRange,
    TradeDirection,
    TrendingMode,
    TrendingSelection,
)
from volume_campaign.utils import LookupUnavailable, TransportTimeout, VolumeCampaignError

from conftest import TOKEN, WALLET

TX_HASH = "0x" + "ab" * 32
ROUTER = "0x" + "de" * 20
SPENDER = "0x" + "0f" * 20


def quote_response(status_code=200, allowance_spender=None, buy_amount="5000"):
    response = MagicMock()
    response.status_code = status_code
    response.text = "" if status_code == 200 else "insufficient liquidity"
    response.json.return_value = {
        "liquidityAvailable": True,
        "buyAmount": buy_amount,
        "transaction": {
            "to": ROUTER,
            "data": "0xdeadbeef",
            "value": "10000000000000000",
            "gas": "210000",
            "gasPrice": "1000",
        },
        "issues": {"allowance": {"spender": allowance_spender} if allowance_spender else None},
    }
    return response


@pytest.fixture
def wallet():
    wallet = MagicMock()
    wallet.address = WALLET
    wallet.chain_id = 8453
    wallet.get_nonce.return_value = 7
    wallet.sign_transaction.return_value = MagicMock(name="signed")
    wallet.broadcast.return_value = TX_HASH
    wallet.wait_for_confirmation.return_value = {"status": 1}
    wallet.get_token_balance_units.return_value = 10000
    return wallet


@pytest.fixture
def session():
    session = MagicMock()
    session.get.return_value = quote_response()
    return session


@pytest.fixture
def executor(wallet, session):
    return SwapExecutor(wallet, api_key="test-key", confirm_timeout=30, session=session)


@pytest.fixture
def no_retry_wait():
    with patch.object(SwapExecutor._get_quote.retry, "sleep", lambda seconds: None):
        yield


class TestSwapExecutor:

    def test_buy_leg(self, executor, wallet, session, make_config):
        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert result.success
        assert result.tx_reference == TX_HASH
        params = session.get.call_args[1]["params"]
        assert params["sellToken"] == NATIVE_TOKEN
        assert params["buyToken"] == TOKEN
        assert params["sellAmount"] == str(10**16)
        assert params["slippageBps"] == "100"
        assert params["taker"] == WALLET
        assert session.get.call_args[1]["headers"]["0x-api-key"] == "test-key"

        tx = wallet.sign_transaction.call_args[0][0]
        assert tx["nonce"] == 7
        assert tx["chainId"] == 8453
        assert tx["value"] == 10**16
        wallet.wait_for_confirmation.assert_called_once_with(TX_HASH, 30)

    def test_sell_returns_bought_amount(self, executor, session, make_config):
        config = make_config()
        asyncio.run(executor.execute_trade_operation(config, 0.01, TradeDirection.BUY))
        result = asyncio.run(executor.execute_trade_operation(config, 0.01, TradeDirection.SELL))

        assert result.success
        params = session.get.call_args[1]["params"]
        assert params["sellToken"] == TOKEN
        assert params["buyToken"] == NATIVE_TOKEN
        assert params["sellAmount"] == "5000"

    def test_sell_without_buy_uses_balance(self, executor, session, make_config):
        asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.SELL))
        assert session.get.call_args[1]["params"]["sellAmount"] == "10000"

    def test_sell_with_nothing_to_sell(self, executor, wallet, session, make_config):
        wallet.get_token_balance_units.return_value = 0

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.SELL))

        assert not result.success
        assert result.error == "quote failed: No token balance to sell"
        session.get.assert_not_called()

    def test_sell_approves_spender(self, executor, wallet, session, make_config):
        session.get.return_value = quote_response(allowance_spender=SPENDER)
        token = wallet.token_contract.return_value
        token.functions.approve.return_value.build_transaction.return_value = {"to": TOKEN}

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.SELL))

        assert result.success
        wallet.token_contract.assert_called_once_with(TOKEN)
        spender, amount = token.functions.approve.call_args[0]
        assert spender.lower() == SPENDER
        assert amount == 2**256 - 1
        assert wallet.broadcast.call_count == 2

    def test_confirmation_timeout_fails_the_leg(self, executor, wallet, make_config):
        wallet.wait_for_confirmation.side_effect = TransportTimeout(
            "Transaction not confirmed", step="confirm", timeout=30
        )

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert not result.success
        assert result.error == "confirm failed: Transaction not confirmed (timeout after 30s)"

    def test_reverted_transaction(self, executor, wallet, make_config):
        wallet.wait_for_confirmation.return_value = {"status": 0}

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert not result.success
        assert result.error.startswith("confirm failed: Transaction reverted")

    def test_quote_failure_is_retried(self, executor, session, make_config, no_retry_wait):
        session.get.return_value = quote_response(status_code=400)

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert not result.success
        assert result.error.startswith("quote failed: 0x API error 400")
        assert session.get.call_count == 3

    def test_quote_recovers_after_transient_error(self, executor, session, make_config, no_retry_wait):
        session.get.side_effect = [quote_response(status_code=503), quote_response()]

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert result.success
        assert session.get.call_count == 2

    def test_non_json_quote_fails_the_leg(self, executor, wallet, session, make_config, no_retry_wait):
        response = quote_response()
        response.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0)
        session.get.return_value = response

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert not result.success
        assert result.error.startswith("quote failed: 0x API returned non-JSON quote")
        assert session.get.call_count == 3
        wallet.broadcast.assert_not_called()

    def test_unexpected_error_fails_the_leg(self, executor, wallet, make_config):
        wallet.get_token_balance_units.return_value = None

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.SELL))

        assert not result.success
        assert result.error

    def test_broadcast_failure_names_step(self, executor, wallet, make_config):
        wallet.broadcast.side_effect = ValueError("nonce too low")

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert not result.success
        assert result.error == "broadcast failed: nonce too low"

    def test_sign_failure_names_step(self, executor, wallet, make_config):
        wallet.sign_transaction.side_effect = TypeError("invalid transaction")

        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert result.error == "sign failed: invalid transaction"


class TestDryRunExecutor:

    def test_success(self, make_config):
        executor = DryRunExecutor()
        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.BUY))

        assert result.success
        assert result.tx_reference.startswith("DRYRUN-")

    def test_failure_rate(self, make_config):
        executor = DryRunExecutor(failure_rate=1.0, rng=random.Random(0))
        result = asyncio.run(executor.execute_trade_operation(make_config(), 0.01, TradeDirection.SELL))

        assert not result.success
        assert result.error == "Simulated failure"

    def test_invalid_failure_rate(self):
        with pytest.raises(ValueError):
            DryRunExecutor(failure_rate=1.5)


class TestJobRequest:

    def test_bump_request(self, make_config):
        body = build_job_request(make_config(trade_count=200, duration_minutes=90), WALLET)

        assert body == {
            "user_wallet": WALLET,
            "token_mint": TOKEN,
            "mode": "bump",
            "num_makers": 200,
            "duration_hours": 1.5,
            "trade_size_sol": 0.01,
            "slippage_pct": 1.0,
        }

    def test_advanced_request(self, make_config):
        config = make_config(pacing=AdvancedMode(DelayRange(min_seconds=5, max_seconds=30)))
        body = build_job_request(config, WALLET, use_jito=True, target_price_usd=0.02)

        assert body["mode"] == "advanced"
        assert body["custom_delay_min"] == 5
        assert body["custom_delay_max"] == 30
        assert body["use_jito"] is True
        assert body["target_price_usd"] == 0.02
        assert "selected_platforms" not in body

    def test_trending_request(self, make_config):
        pacing = TrendingMode(TrendingSelection(frozenset({"dextools", "birdeye"}), "high"))
        body = build_job_request(make_config(pacing=pacing), WALLET)

        assert body["selected_platforms"] == ["birdeye", "dextools"]
        assert body["trending_intensity"] == "high"
        assert "custom_delay_min" not in body


class TestJobExecutor:

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.run_volume_bot.return_value = BotJobResponse(
            status="started", job_id="job-1", estimated_duration_hours=1.0, estimated_volume_usd=1000
        )
        return client

    def test_submit(self, client, make_config):
        jobs = JobExecutor(client, WALLET)

        assert asyncio.run(jobs.submit_campaign_job(make_config())) == "job-1"
        assert client.run_volume_bot.call_args[0][0]["user_wallet"] == WALLET

    def test_rejected_submission(self, client, make_config):
        client.run_volume_bot.return_value = BotJobResponse(status="error", job_id="", message="bad mint")

        with pytest.raises(VolumeCampaignError, match="bad mint"):
            asyncio.run(JobExecutor(client, WALLET).submit_campaign_job(make_config()))

    def test_poll(self, client):
        client.get_bot_progress.return_value = "snapshot"
        assert asyncio.run(JobExecutor(client, WALLET).poll_job_progress("job-1")) == "snapshot"

    def test_cancel_is_best_effort(self, client):
        client.stop_bot_job.side_effect = LookupUnavailable("down")
        assert asyncio.run(JobExecutor(client, WALLET).cancel_job("job-1")) is False

        client.stop_bot_job.side_effect = None
        client.stop_bot_job.return_value = {"status": "stopped"}
        assert asyncio.run(JobExecutor(client, WALLET).cancel_job("job-1")) is True
