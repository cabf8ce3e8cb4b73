"""
Pacing Engine
=============
Drives one campaign to completion: either locally, one buy/sell pair at a
time with a delay schedule between pairs, or remotely, by submitting the
campaign as a job and polling its progress.

State machine: Idle -> Running -> Completed | Error. stop() moves a running
campaign to Completed at any time. Paused is only ever entered from a remote
job's reported status.

All run state lives on the engine and changes only through aggregator.apply;
observers receive immutable CampaignRun snapshots.
"""

import asyncio
import random
from dataclasses import replace
from typing import Awaitable, Callable, Iterator, Optional

from . import aggregator
from .config import Settings
from .executors import JobExecutor, TradeExecutor
from .logging_utils import new_correlation_id
from .models import (
    AdvancedMode,
    BoostMode,
    BumpMode,
    CampaignConfig,
    CampaignEvent,
    CampaignRun,
    LegResolved,
    LegSubmitted,
    Pacing,
    RunStatus,
    StatusChange,
    TradeDirection,
    TradeLogEntry,
    TradeOutcomeEvent,
    TrendingMode,
)
from .utils import (
    CampaignAlreadyRunning,
    JobTerminalFailure,
    LookupUnavailable,
    VolumeCampaignError,
    logger,
    sanitize_error_message,
)

JITTER_RANGE = (0.8, 1.2)

Notifier = Callable[[str, str], None]
UpdateListener = Callable[[CampaignRun], None]
Sleeper = Callable[[float], Awaitable[None]]


def compute_base_delay_ms(pacing: Pacing, duration_minutes: int, trade_count: int) -> float:
    """
    Un-jittered delay before each pair for the duration-driven modes.

    Boost packs the pairs into half the window, Bump spreads them over all of it.
    """
    if trade_count <= 0:
        raise ValueError("trade_count must be positive")
    if isinstance(pacing, BoostMode):
        return duration_minutes * 60000 / (trade_count * 2)
    if isinstance(pacing, BumpMode):
        return duration_minutes * 60000 / trade_count
    raise ValueError(f"No base delay for {pacing.mode.value} mode")


def next_delay_ms(pacing: Pacing, duration_minutes: int, trade_count: int, rng: random.Random) -> float:
    """Delay before the next pair, freshly drawn on every call."""
    if isinstance(pacing, AdvancedMode):
        delay_range = pacing.delay_range
        return rng.uniform(delay_range.min_seconds * 1000, delay_range.max_seconds * 1000)
    if isinstance(pacing, TrendingMode):
        raise ValueError("Trending campaigns are paced by the remote job")
    return compute_base_delay_ms(pacing, duration_minutes, trade_count) * rng.uniform(*JITTER_RANGE)


class DelaySchedule:
    """Lazily drawn per-pair delays for one campaign."""

    def __init__(self, config: CampaignConfig, rng: Optional[random.Random] = None):
        if isinstance(config.pacing, TrendingMode):
            raise ValueError("Trending campaigns are paced by the remote job")
        self.config = config
        self.rng = rng or random.Random()

    def next_ms(self) -> float:
        return next_delay_ms(self.config.pacing, self.config.duration_minutes, self.config.trade_count, self.rng)

    def __iter__(self) -> Iterator[float]:
        for _ in range(self.config.trade_count):
            yield self.next_ms()


def _log_notification(level: str, message: str):
    if level == "error":
        logger.error(message)
    elif level == "warning":
        logger.warning(message)
    else:
        logger.info(message)


class PacingEngine:
    """
    Runs one campaign at a time.

    Args:
        executor: per-leg executor for local campaigns
        job_executor: remote job executor; required for trending or remote campaigns
        settings: runtime settings (settle pause, poll interval, USD estimate)
        notify: callback(level, message) for user-visible notifications
        on_update: callback(run) invoked with every new CampaignRun
        rng: random source for the delay schedule
        remote: delegate every campaign to the remote job, whatever its mode
        sleep: coroutine used for delays instead of waiting on the stop event
    """

    def __init__(
        self,
        executor: Optional[TradeExecutor] = None,
        job_executor: Optional[JobExecutor] = None,
        settings: Optional[Settings] = None,
        notify: Optional[Notifier] = None,
        on_update: Optional[UpdateListener] = None,
        rng: Optional[random.Random] = None,
        remote: bool = False,
        sleep: Optional[Sleeper] = None,
    ):
        self.executor = executor
        self.job_executor = job_executor
        self.settings = settings or Settings()
        self.notify = notify or _log_notification
        self.on_update = on_update
        self.rng = rng or random.Random()
        self.remote = remote
        self._sleep = sleep

        self._run: Optional[CampaignRun] = None
        self._config: Optional[CampaignConfig] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def run(self) -> Optional[CampaignRun]:
        """The latest snapshot of the current (or last) campaign."""
        return self._run

    @property
    def is_running(self) -> bool:
        return self._run is not None and not self._run.status.is_terminal

    def uses_remote_job(self, config: CampaignConfig) -> bool:
        return self.remote or isinstance(config.pacing, TrendingMode)

    def start(self, config: CampaignConfig) -> CampaignRun:
        """
        Begin ``config`` in the running event loop and return the initial run.

        Raises:
            CampaignAlreadyRunning: a campaign is running, or a stopped one
                still has a trade in flight
            ValueError: no executor suitable for the campaign was configured
        """
        if self.is_running:
            raise CampaignAlreadyRunning(f"Campaign {self._run.id} is already running")
        if self._task is not None and not self._task.done():
            raise CampaignAlreadyRunning(f"Campaign {self._run.id} is still finishing its last trade")

        if self.uses_remote_job(config):
            if self.job_executor is None:
                raise ValueError(f"A job executor is required for {config.mode.value} campaigns")
        elif self.executor is None:
            raise ValueError("A trade executor is required for local campaigns")

        self._config = config
        self._stop_event = asyncio.Event()
        self._run = CampaignRun.begin(new_correlation_id(), config)
        self._publish()

        self._task = asyncio.get_running_loop().create_task(self._drive(config))
        return self._run

    async def wait(self) -> CampaignRun:
        """Wait for the drive task, including a trade still in flight after stop()."""
        if self._task is not None:
            await self._task
        return self._run

    async def run_campaign(self, config: CampaignConfig) -> CampaignRun:
        self.start(config)
        return await self.wait()

    def stop(self):
        """
        Stop the campaign. Safe to call repeatedly, and whether or not a trade
        is in flight; an in-flight trade still has its outcome recorded.
        """
        if self._run is None:
            return
        self._stop_event.set()
        if self._run.status.is_terminal:
            return

        self._apply(StatusChange(RunStatus.COMPLETED))
        logger.info(f"Campaign {self._run.id} stopped by user")
        self.notify("info", "Campaign stopped")

    @property
    def stop_requested(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    def _publish(self):
        if self.on_update is not None:
            self.on_update(self._run)

    def _apply(self, event: CampaignEvent):
        updated = aggregator.apply(self._run, event)
        if updated is not self._run:
            self._run = updated
            self._publish()

    async def _pause(self, seconds: float) -> bool:
        """Wait ``seconds`` unless stopped first. Returns True when stop was requested."""
        if self.stop_requested:
            return True
        if self._sleep is not None:
            await self._sleep(seconds)
            return self.stop_requested
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _drive(self, config: CampaignConfig):
        logger.set_correlation_id(self._run.id)
        logger.info(
            f"Campaign {self._run.id} started: {config.trade_count} pairs, "
            f"{config.mode.value} mode over {config.duration_minutes}m"
        )
        try:
            if self.uses_remote_job(config):
                await self._drive_job(config)
            else:
                await self._drive_local(config)
        except VolumeCampaignError as e:
            self._fail(sanitize_error_message(e))
            await self._cancel_orphaned_job()
        except Exception as e:
            logger.exception(f"Campaign {self._run.id} crashed")
            self._fail(sanitize_error_message(e))
            await self._cancel_orphaned_job()
        finally:
            logger.info(
                f"Campaign {self._run.id} ended {self._run.status.value}: "
                f"{self._run.success_count} ok / {self._run.failure_count} failed"
            )
            logger.set_correlation_id(None)

    def _fail(self, message: str):
        self._apply(StatusChange(RunStatus.ERROR, message))
        self.notify("error", message)

    async def _cancel_orphaned_job(self):
        """A remote job must not keep trading after the local run has failed."""
        if self._run.job_id is None or self.job_executor is None:
            return
        try:
            await self.job_executor.cancel_job(self._run.job_id)
        except Exception:
            logger.exception(f"Could not cancel job {self._run.job_id}")

    # Local execution

    async def _drive_local(self, config: CampaignConfig):
        for pair_index, delay_ms in enumerate(DelaySchedule(config, self.rng), start=1):
            logger.debug(f"Next pair in {delay_ms / 1000:.1f}s")
            if await self._pause(delay_ms / 1000):
                return
            await self._execute_pair(config, pair_index)
            if self.stop_requested:
                return

        self._apply(StatusChange(RunStatus.COMPLETED))
        self.notify(
            "success",
            f"Campaign completed: {self._run.success_count}/{self._run.completed_count} pairs succeeded"
        )

    async def _execute_pair(self, config: CampaignConfig, pair_index: int):
        """One buy then one sell; the sell is skipped when the buy fails."""
        buy_ok = await self._execute_leg(config, pair_index, TradeDirection.BUY)
        sell_ok = False
        if buy_ok:
            if self.settings.sell_settle_seconds > 0:
                await (self._sleep or asyncio.sleep)(self.settings.sell_settle_seconds)
            sell_ok = await self._execute_leg(config, pair_index, TradeDirection.SELL)

        legs_filled = int(buy_ok) + int(sell_ok)
        self._apply(TradeOutcomeEvent(
            pair_index=pair_index,
            success=buy_ok and sell_ok,
            volume=config.trade_size * legs_filled * self.settings.usd_per_unit,
            minutes_elapsed=config.minutes_per_trade,
        ))

    async def _execute_leg(self, config: CampaignConfig, pair_index: int, direction: TradeDirection) -> bool:
        entry = TradeLogEntry(
            id=f"{self._run.id}-{pair_index}-{direction.value}",
            pair_index=pair_index,
            direction=direction,
            amount=config.trade_size,
        )
        self._apply(LegSubmitted(entry))

        try:
            result = await self.executor.execute_trade_operation(config, config.trade_size, direction)
            success, tx_reference, error = result.success, result.tx_reference, result.error
        except VolumeCampaignError as e:
            success, tx_reference, error = False, None, sanitize_error_message(e)
        except Exception as e:
            logger.exception(f"Pair {pair_index} {direction.value} raised")
            success, tx_reference, error = False, None, sanitize_error_message(e)

        self._apply(LegResolved(entry.id, success, tx_reference, error))
        if not success:
            logger.warning(f"Pair {pair_index} {direction.value} failed: {error}")
            self.notify("warning", f"Trade {pair_index} {direction.value} failed: {error or 'unknown error'}")
        return success

    # Remote execution

    async def _drive_job(self, config: CampaignConfig):
        job_id = await self.job_executor.submit_campaign_job(config)
        self._run = replace(self._run, job_id=job_id)
        self._publish()

        if self.stop_requested:
            await self.job_executor.cancel_job(job_id)
            return
        self.notify("info", f"Job {job_id} submitted")

        while not await self._pause(self.settings.poll_interval):
            try:
                snapshot = await self.job_executor.poll_job_progress(job_id)
            except LookupUnavailable as e:
                logger.warning(f"Progress poll for job {job_id} failed, retrying next tick: {e}")
                continue

            if self.stop_requested:
                logger.debug(f"Discarding progress for job {job_id} received after stop")
                break

            self._apply(snapshot)
            if snapshot.is_terminal:
                self._finish_job(job_id, snapshot)
                return

        await self.job_executor.cancel_job(job_id)

    def _finish_job(self, job_id: str, snapshot):
        if snapshot.is_failure:
            failure = JobTerminalFailure(job_id, snapshot.error_message)
            logger.error(str(failure))
            self.notify("error", str(failure))
        else:
            self.notify("success", f"Job {job_id} {snapshot.normalized_status}")
