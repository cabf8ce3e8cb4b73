"""
Remote Execution Service Client
===============================
HTTP/JSON client for the bot-execution backend.

Endpoints (relative to Settings.api_base_url):
- POST /run-volume-bot                  submit a campaign job
- GET  /bot-progress/{job_id}           poll job progress
- POST /stop-bot/{job_id}               stop a job
- GET  /check-pool/{token_mint}         pool existence lookup
- GET  /trending/platforms              trending platform catalog
- POST /trending/multi-platform-costs   trending cost estimate
- GET  /get-trending-metrics/{mint}     token trending metrics
- GET  /list-jobs/{wallet}              jobs submitted by a wallet

Every call is bounded by a client-side timeout. A timeout raises
TransportTimeout, any other transport, HTTP or decoding failure raises
LookupUnavailable. Callers decide how to degrade.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from .models import ProgressSnapshot
from .utils import LookupUnavailable, TransportTimeout, logger


@dataclass(frozen=True)
class BotJobResponse:
    status: str
    job_id: str
    message: str = ""
    estimated_duration_hours: float = 0.0
    estimated_volume_usd: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotJobResponse":
        return cls(
            status=str(data.get("status", "")),
            job_id=str(data.get("job_id") or ""),
            message=str(data.get("message") or ""),
            estimated_duration_hours=float(data.get("estimated_duration_hours") or 0.0),
            estimated_volume_usd=float(data.get("estimated_volume_usd") or 0.0),
        )


@dataclass(frozen=True)
class PoolInfo:
    exists: bool
    token_mint: str
    liquidity_usd: float = 0.0
    volume_24h: float = 0.0
    fee_tier: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolInfo":
        pool = data.get("pool_info") or {}
        return cls(
            exists=bool(data.get("exists")),
            token_mint=str(data.get("token_mint", "")),
            liquidity_usd=float(pool.get("liquidity_usd") or 0.0),
            volume_24h=float(pool.get("volume_24h") or 0.0),
            fee_tier=float(pool.get("fee_tier") or 0.0),
        )


@dataclass(frozen=True)
class TrendingPlatform:
    id: str
    name: str
    min_volume_24h: float = 0.0
    difficulty: str = ""


@dataclass(frozen=True)
class TrendingIntensity:
    id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class TrendingCatalog:
    platforms: Tuple[TrendingPlatform, ...]
    intensities: Tuple[TrendingIntensity, ...]
    is_fallback: bool = False

    @property
    def platform_ids(self) -> Tuple[str, ...]:
        return tuple(p.id for p in self.platforms)

    @property
    def intensity_ids(self) -> Tuple[str, ...]:
        return tuple(i.id for i in self.intensities)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrendingCatalog":
        platforms = tuple(
            TrendingPlatform(
                id=str(p["id"]),
                name=str(p.get("name") or p["id"]),
                min_volume_24h=float(p.get("min_volume_24h") or 0.0),
                difficulty=str(p.get("difficulty") or ""),
            )
            for p in data.get("platforms") or []
        )
        intensities = tuple(
            TrendingIntensity(
                id=str(i["id"]),
                name=str(i.get("name") or i["id"]),
                description=str(i.get("description") or ""),
            )
            for i in data.get("intensities") or []
        )
        return cls(platforms=platforms, intensities=intensities)


DEFAULT_TRENDING_CATALOG = TrendingCatalog(
    platforms=(
        TrendingPlatform("dexscreener", "DEX Screener", 50_000, "medium"),
        TrendingPlatform("dextools", "DEXTools", 100_000, "hard"),
        TrendingPlatform("birdeye", "Birdeye", 25_000, "easy"),
        TrendingPlatform("geckoterminal", "GeckoTerminal", 75_000, "medium"),
    ),
    intensities=(
        TrendingIntensity("low", "Low", "Gentle push, lowest cost"),
        TrendingIntensity("medium", "Medium", "Balanced cost and visibility"),
        TrendingIntensity("high", "High", "Strong push for top placement"),
        TrendingIntensity("aggressive", "Aggressive", "Maximum volume, highest cost"),
    ),
    is_fallback=True,
)


@dataclass(frozen=True)
class TrendingCostEstimate:
    """Per-platform cost/success/time estimates plus aggregate totals."""
    platforms: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    totals: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrendingCostEstimate":
        raw = data.get("platform_costs") or data.get("platforms") or {}
        if isinstance(raw, list):
            raw = {str(item.get("platform") or item.get("id")): item for item in raw}
        totals = data.get("totals") or data.get("total") or {}
        return cls(platforms=dict(raw), totals=dict(totals))


class BackendClient:
    """
    Client for the remote bot-execution service.

    Uses a single requests.Session so connections are reused across polls.
    """

    def __init__(
        self,
        api_base_url: str,
        backend_url: Optional[str] = None,
        timeout: float = 30.0,
        lookup_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.backend_url = (backend_url or api_base_url).rstrip("/")
        self.timeout = timeout
        self.lookup_timeout = lookup_timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    @classmethod
    def from_settings(cls, settings) -> "BackendClient":
        return cls(
            api_base_url=settings.api_base_url,
            backend_url=settings.backend_url,
            timeout=settings.request_timeout,
            lookup_timeout=settings.lookup_timeout,
        )

    def _url(self, path: str) -> str:
        return f"{self.api_base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Perform one call and decode its JSON body."""
        timeout = timeout or self.timeout
        logger.debug(f"API call: {method} {url}")

        try:
            response = self.session.request(method, url, json=payload, timeout=timeout)
        except requests.Timeout:
            raise TransportTimeout(f"{method} {url}", step="request", timeout=timeout)
        except requests.RequestException as e:
            raise LookupUnavailable(f"{method} {url} failed: {e}")

        if not response.ok:
            raise LookupUnavailable(f"{method} {url} failed: HTTP {response.status_code}: {response.reason}")

        try:
            data = response.json()
        except ValueError:
            raise LookupUnavailable(f"{method} {url} returned a non-JSON body")

        logger.debug(f"API success: {method} {url}")
        return data

    # Campaign jobs

    def run_volume_bot(self, params: Dict[str, Any]) -> BotJobResponse:
        data = self._request("POST", self._url("/run-volume-bot"), payload=params)
        return BotJobResponse.from_dict(data)

    def get_bot_progress(self, job_id: str) -> ProgressSnapshot:
        data = self._request("GET", self._url(f"/bot-progress/{job_id}"))
        try:
            return ProgressSnapshot.from_dict({**data, "job_id": data.get("job_id") or job_id})
        except (ValueError, TypeError, AttributeError) as e:
            raise LookupUnavailable(f"Malformed progress for job {job_id}: {e}")

    def stop_bot_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("POST", self._url(f"/stop-bot/{job_id}"))

    def list_jobs(self, user_wallet: str) -> List[Dict[str, Any]]:
        data = self._request("GET", self._url(f"/list-jobs/{user_wallet}"))
        return list(data.get("jobs") or [])

    # Read-only lookups

    def check_pool(self, token_mint: str) -> PoolInfo:
        data = self._request("GET", self._url(f"/check-pool/{token_mint}"), timeout=self.lookup_timeout)
        return PoolInfo.from_dict(data)

    def get_trending_metrics(self, token_mint: str) -> Dict[str, Any]:
        return self._request("GET", self._url(f"/get-trending-metrics/{token_mint}"), timeout=self.lookup_timeout)

    def get_trending_platforms(self) -> TrendingCatalog:
        data = self._request("GET", self._url("/trending/platforms"), timeout=self.lookup_timeout)
        return TrendingCatalog.from_dict(data)

    def get_trending_catalog(self) -> TrendingCatalog:
        """Trending catalog, falling back to the built-in list when the service is unreachable."""
        try:
            catalog = self.get_trending_platforms()
        except LookupUnavailable as e:
            logger.warning(f"Trending platforms unavailable, using defaults: {e}")
            return DEFAULT_TRENDING_CATALOG
        if not catalog.platforms:
            return DEFAULT_TRENDING_CATALOG
        return catalog

    def get_multi_platform_costs(
        self,
        token_mint: str,
        platforms: List[str],
        intensity: str,
        duration_hours: Optional[float] = None,
    ) -> TrendingCostEstimate:
        payload: Dict[str, Any] = {
            "token_mint": token_mint,
            "selected_platforms": list(platforms),
            "trending_intensity": intensity,
        }
        if duration_hours is not None:
            payload["duration_hours"] = duration_hours
        data = self._request("POST", self._url("/trending/multi-platform-costs"), payload=payload)
        return TrendingCostEstimate.from_dict(data)

    # Connectivity

    def health(self) -> Dict[str, Any]:
        return self._request("GET", f"{self.backend_url}/health", timeout=self.lookup_timeout)

    def test_connection(self) -> Tuple[int, int]:
        """
        Probe the health, root and tokens endpoints.

        Returns:
            (endpoints answering, endpoints probed)
        """
        probes = [
            ("health", f"{self.backend_url}/health"),
            ("root", self.backend_url),
            ("tokens", self._url("/tokens")),
        ]
        answered = 0
        for name, url in probes:
            try:
                self._request("GET", url, timeout=self.lookup_timeout)
            except LookupUnavailable as e:
                logger.info(f"Backend probe {name}: {e}")
                continue
            answered += 1

        if answered == 0:
            logger.warning("Backend unreachable; it may be cold-starting, try again in a minute")
        return answered, len(probes)
