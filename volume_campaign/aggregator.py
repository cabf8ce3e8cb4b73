"""
Progress Aggregator
===================
Pure reducer from (CampaignRun, event) to a new CampaignRun.

Invariants kept by every transition:
- completed_count, success_count, failure_count and volume_generated never
  decrease
- estimated_remaining_minutes never increases
- success_count + failure_count <= completed_count <= trade_count
- a terminal status (completed, error) is never left
- a trade log entry is resolved at most once
"""

from dataclasses import replace
from typing import Tuple

from .models import (
    DISPLAY_LOG_LIMIT,
    CampaignEvent,
    CampaignRun,
    LegResolved,
    LegSubmitted,
    ProgressSnapshot,
    RunStatus,
    StatusChange,
    TradeLogEntry,
    TradeOutcomeEvent,
    TradeStatus,
)
from .utils import logger

REMOTE_STATUS_MAP = {
    "running": RunStatus.RUNNING,
    "pending": RunStatus.RUNNING,
    "queued": RunStatus.RUNNING,
    "paused": RunStatus.PAUSED,
    "completed": RunStatus.COMPLETED,
    "stopped": RunStatus.COMPLETED,
    "failed": RunStatus.ERROR,
    "error": RunStatus.ERROR,
}


def apply(run: CampaignRun, event: CampaignEvent) -> CampaignRun:
    """Return the run that results from applying ``event`` to ``run``."""
    if isinstance(event, LegSubmitted):
        return _apply_leg_submitted(run, event)
    if isinstance(event, LegResolved):
        return _apply_leg_resolved(run, event)
    if isinstance(event, TradeOutcomeEvent):
        return _apply_trade_outcome(run, event)
    if isinstance(event, ProgressSnapshot):
        return _apply_snapshot(run, event)
    if isinstance(event, StatusChange):
        return transition(run, event.status, event.error_message)
    raise TypeError(f"Unsupported campaign event: {type(event).__name__}")


def transition(run: CampaignRun, status: RunStatus, error_message=None) -> CampaignRun:
    """Move to ``status`` unless the run already reached a terminal state."""
    if run.status.is_terminal or run.status is status:
        return run
    return replace(run, status=status, error_message=error_message or run.error_message)


def visible_log(run: CampaignRun, limit: int = DISPLAY_LOG_LIMIT) -> Tuple[TradeLogEntry, ...]:
    """The slice of the trade log surfaced for display, newest first."""
    return run.recent_trades(limit)


def _apply_leg_submitted(run: CampaignRun, event: LegSubmitted) -> CampaignRun:
    entry = event.entry
    if entry.status is not TradeStatus.PENDING:
        entry = replace(entry, status=TradeStatus.PENDING, tx_reference=None, error_detail=None)
    return replace(run, trade_log=run.trade_log + (entry,))


def _apply_leg_resolved(run: CampaignRun, event: LegResolved) -> CampaignRun:
    # Scan from the end: the pending leg is almost always the newest entry
    for position in range(len(run.trade_log) - 1, -1, -1):
        entry = run.trade_log[position]
        if entry.id != event.entry_id:
            continue
        if entry.is_resolved:
            logger.warning(f"Ignoring second resolution of trade leg {entry.id}")
            return run
        resolved = replace(
            entry,
            status=TradeStatus.SUCCESS if event.success else TradeStatus.FAILED,
            tx_reference=event.tx_reference,
            error_detail=None if event.success else event.error_detail,
        )
        log = run.trade_log[:position] + (resolved,) + run.trade_log[position + 1:]
        return replace(run, trade_log=log)

    logger.warning(f"Ignoring resolution of unknown trade leg {event.entry_id}")
    return run


def _apply_trade_outcome(run: CampaignRun, event: TradeOutcomeEvent) -> CampaignRun:
    if run.completed_count >= run.trade_count:
        logger.warning(f"Ignoring outcome of pair {event.pair_index}: all {run.trade_count} pairs counted")
        return run

    return replace(
        run,
        completed_count=run.completed_count + 1,
        success_count=run.success_count + (1 if event.success else 0),
        failure_count=run.failure_count + (0 if event.success else 1),
        volume_generated=run.volume_generated + max(event.volume, 0.0),
        estimated_remaining_minutes=max(0.0, run.estimated_remaining_minutes - max(event.minutes_elapsed, 0.0)),
    )


def _apply_snapshot(run: CampaignRun, snapshot: ProgressSnapshot) -> CampaignRun:
    trade_count = run.trade_count
    if snapshot.total_makers > 0 and run.completed_count <= snapshot.total_makers:
        trade_count = snapshot.total_makers

    completed = min(max(run.completed_count, snapshot.completed_makers), trade_count)
    # transactions.successful/failed count legs (up to two per maker); read as
    # pair outcomes and bounded by completed pairs. Success leaves room for the
    # failures already counted so neither counter goes back.
    success = min(max(run.success_count, snapshot.successful), completed - run.failure_count)
    failure = min(max(run.failure_count, snapshot.failed), completed - success)

    remaining = run.estimated_remaining_minutes
    if snapshot.estimated_completion is not None:
        try:
            remaining = min(remaining, max(0.0, float(snapshot.estimated_completion)))
        except (TypeError, ValueError):
            logger.debug(f"Unparseable estimated_completion: {snapshot.estimated_completion!r}")

    updated = replace(
        run,
        trade_count=trade_count,
        completed_count=completed,
        success_count=success,
        failure_count=failure,
        volume_generated=max(run.volume_generated, snapshot.generated_volume),
        estimated_remaining_minutes=remaining,
        job_id=run.job_id or snapshot.job_id or None,
    )

    status = REMOTE_STATUS_MAP.get(snapshot.normalized_status)
    if status is None:
        logger.debug(f"Unknown remote job status {snapshot.status!r}, keeping {run.status.value}")
        return updated
    if status is RunStatus.COMPLETED:
        updated = replace(updated, estimated_remaining_minutes=0.0)
    return transition(updated, status, snapshot.error_message if status is RunStatus.ERROR else None)
