"""Tests for the remote service client (HTTP session mocked)."""

from unittest.mock import MagicMock

import pytest
import requests

from volume_campaign.api_client import DEFAULT_TRENDING_CATALOG, BackendClient
from volume_campaign.config import Settings
from volume_campaign.utils import LookupUnavailable, TransportTimeout


def make_response(payload=None, status_code=200, json_error=False):
    response = MagicMock()
    response.ok = 200 <= status_code < 400
    response.status_code = status_code
    response.reason = "Bad Gateway" if status_code == 502 else "OK"
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def client(session):
    return BackendClient(
        api_base_url="http://backend.test/api/",
        backend_url="http://backend.test",
        timeout=30,
        lookup_timeout=10,
        session=session,
    )


class TestJobs:

    def test_run_volume_bot(self, client, session):
        session.request.return_value = make_response({
            "status": "started",
            "job_id": "job-42",
            "message": "Bot started",
            "estimated_duration_hours": 1.5,
            "estimated_volume_usd": 2500,
        })

        response = client.run_volume_bot({"token_mint": "abc", "num_makers": 100})

        session.request.assert_called_once_with(
            "POST", "http://backend.test/api/run-volume-bot",
            json={"token_mint": "abc", "num_makers": 100}, timeout=30,
        )
        assert response.job_id == "job-42"
        assert response.estimated_duration_hours == 1.5
        assert response.estimated_volume_usd == 2500.0

    def test_get_bot_progress(self, client, session):
        session.request.return_value = make_response({
            "job_id": "job-42",
            "status": "running",
            "completed_makers": 40,
            "total_makers": 100,
            "generated_volume": 1234.5,
            "current_buy_ratio": 0.55,
            "progress_percentage": 40.0,
            "estimated_completion": 36,
            "transactions": {"total": 80, "successful": 76, "failed": 4},
            "active_wallets": 12,
        })

        snapshot = client.get_bot_progress("job-42")

        assert session.request.call_args[0] == ("GET", "http://backend.test/api/bot-progress/job-42")
        assert snapshot.completed_makers == 40
        assert snapshot.successful == 76
        assert snapshot.failed == 4
        assert snapshot.total_transactions == 80
        assert snapshot.active_wallets == 12
        assert not snapshot.is_terminal

    def test_progress_without_job_id_uses_requested_id(self, client, session):
        session.request.return_value = make_response({"status": "completed"})

        snapshot = client.get_bot_progress("job-7")

        assert snapshot.job_id == "job-7"
        assert snapshot.is_terminal
        assert not snapshot.is_failure

    @pytest.mark.parametrize("payload", [
        {"status": "running", "generated_volume": "n/a"},
        {"status": "running", "transactions": [1, 2]},
        ["running"],
    ])
    def test_malformed_progress_is_lookup_failure(self, client, session, payload):
        session.request.return_value = make_response(payload)

        with pytest.raises(LookupUnavailable, match="Malformed progress for job job-7"):
            client.get_bot_progress("job-7")

    def test_stop_bot_job(self, client, session):
        session.request.return_value = make_response({"status": "stopped", "job_id": "job-42"})

        assert client.stop_bot_job("job-42") == {"status": "stopped", "job_id": "job-42"}
        assert session.request.call_args[0] == ("POST", "http://backend.test/api/stop-bot/job-42")

    def test_list_jobs(self, client, session):
        session.request.return_value = make_response({"jobs": [{"job_id": "a"}, {"job_id": "b"}]})
        assert [j["job_id"] for j in client.list_jobs("wallet-1")] == ["a", "b"]


class TestErrors:

    def test_timeout_raises_transport_timeout(self, client, session):
        session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(TransportTimeout) as exc_info:
            client.get_bot_progress("job-1")

        assert exc_info.value.timeout == 30
        assert "timeout after 30s" in str(exc_info.value)

    def test_timeout_is_also_a_lookup_failure(self, client, session):
        session.request.side_effect = requests.Timeout()

        with pytest.raises(LookupUnavailable):
            client.check_pool("mint")

    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(LookupUnavailable) as exc_info:
            client.check_pool("mint")
        assert not isinstance(exc_info.value, TransportTimeout)

    def test_http_error(self, client, session):
        session.request.return_value = make_response(status_code=502)

        with pytest.raises(LookupUnavailable, match="HTTP 502"):
            client.run_volume_bot({})

    def test_non_json_body(self, client, session):
        session.request.return_value = make_response(json_error=True)

        with pytest.raises(LookupUnavailable, match="non-JSON"):
            client.health()


class TestLookups:

    def test_check_pool_uses_lookup_timeout(self, client, session):
        session.request.return_value = make_response({
            "exists": True,
            "token_mint": "mint",
            "pool_info": {"liquidity_usd": 50000, "volume_24h": 12000, "fee_tier": 0.25},
        })

        pool = client.check_pool("mint")

        assert session.request.call_args[1]["timeout"] == 10
        assert pool.exists
        assert pool.liquidity_usd == 50000.0
        assert pool.fee_tier == 0.25

    def test_trending_catalog(self, client, session):
        session.request.return_value = make_response({
            "platforms": [{"id": "dexscreener", "name": "DEX Screener", "min_volume_24h": 50000,
                           "difficulty": "medium"}],
            "intensities": [{"id": "viral", "name": "Viral", "description": "Everything"}],
        })

        catalog = client.get_trending_catalog()

        assert not catalog.is_fallback
        assert catalog.platform_ids == ("dexscreener",)
        assert catalog.intensity_ids == ("viral",)

    def test_trending_catalog_falls_back(self, client, session):
        session.request.side_effect = requests.ConnectionError("down")

        catalog = client.get_trending_catalog()

        assert catalog is DEFAULT_TRENDING_CATALOG
        assert catalog.is_fallback
        assert "dexscreener" in catalog.platform_ids

    def test_empty_catalog_falls_back(self, client, session):
        session.request.return_value = make_response({"platforms": [], "intensities": []})
        assert client.get_trending_catalog() is DEFAULT_TRENDING_CATALOG

    def test_multi_platform_costs(self, client, session):
        session.request.return_value = make_response({
            "platform_costs": {"dexscreener": {"cost_usd": 300, "success_probability": 0.8}},
            "totals": {"cost_usd": 300},
        })

        estimate = client.get_multi_platform_costs("mint", ["dexscreener"], "medium", duration_hours=2)

        assert session.request.call_args[1]["json"] == {
            "token_mint": "mint",
            "selected_platforms": ["dexscreener"],
            "trending_intensity": "medium",
            "duration_hours": 2,
        }
        assert estimate.platforms["dexscreener"]["cost_usd"] == 300
        assert estimate.totals == {"cost_usd": 300}


class TestConnectivity:

    def test_health_uses_backend_root(self, client, session):
        session.request.return_value = make_response({"status": "ok"})

        assert client.health() == {"status": "ok"}
        assert session.request.call_args[0] == ("GET", "http://backend.test/health")

    def test_connection_probe_counts_answers(self, client, session):
        session.request.side_effect = [
            make_response({"status": "ok"}),
            requests.ConnectionError("refused"),
            make_response({"tokens": []}),
        ]

        assert client.test_connection() == (2, 3)

    def test_from_settings(self):
        settings = Settings(api_base_url="http://api.test/api", backend_url="http://api.test",
                            request_timeout=12, lookup_timeout=4)
        client = BackendClient.from_settings(settings)

        assert client.api_base_url == "http://api.test/api"
        assert client.timeout == 12
        assert client.lookup_timeout == 4
