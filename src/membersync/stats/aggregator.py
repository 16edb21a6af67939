"""Periodic membership stats from Stripe's active subscriptions.

Every cycle walks the full active-subscription collection, recomputes the
snapshot from scratch, swaps it in for readers and writes it to disk.
"""

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterable, Optional

from membersync.payments.billing import iter_active_subscription_pages, subscription_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatsSnapshot:
    """Aggregate of active subscriptions at one point in time."""

    member_count: int = 0
    revenue: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {"members": self.member_count, "revenue": float(self.revenue)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatsSnapshot":
        return cls(
            member_count=int(data["members"]),
            revenue=Decimal(str(data["revenue"])),
        )


class StatsHolder:
    """Current snapshot shared by the sync loop (writer) and /stats (readers).

    Snapshots are immutable and replaced by a single reference assignment,
    so readers see either the previous or the next snapshot, never a mix.
    """

    def __init__(self, initial: Optional[StatsSnapshot] = None):
        self._snapshot = initial or StatsSnapshot()

    @property
    def current(self) -> StatsSnapshot:
        return self._snapshot

    def publish(self, snapshot: StatsSnapshot) -> None:
        self._snapshot = snapshot


async def compute_stats(pages: AsyncIterable[list[Any]]) -> StatsSnapshot:
    """Count subscriptions and sum their amounts (minor units -> major)."""
    count = 0
    revenue_minor = 0
    async for page in pages:
        for subscription in page:
            count += 1
            revenue_minor += subscription_amount(subscription)
    return StatsSnapshot(member_count=count, revenue=Decimal(revenue_minor) / 100)


def write_snapshot(path: Path, snapshot: StatsSnapshot) -> None:
    """Replace the stats file atomically (temp file + rename)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(snapshot.to_dict(), f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def load_snapshot(path: Path) -> Optional[StatsSnapshot]:
    """Read a previously persisted snapshot; None if absent or unreadable."""
    try:
        with open(path, encoding="utf-8") as f:
            return StatsSnapshot.from_dict(json.load(f))
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"Ignoring unreadable stats file {path}: {e}")
        return None


async def sync_stats(holder: StatsHolder, path: Path) -> StatsSnapshot:
    """Run one sync cycle: fetch, aggregate, publish, persist.

    A failed fetch leaves the published snapshot untouched and propagates.
    A failed write is logged; the in-memory snapshot is already published.
    """
    logger.debug("Syncing stats")
    snapshot = await compute_stats(iter_active_subscription_pages())
    holder.publish(snapshot)

    try:
        await asyncio.to_thread(write_snapshot, path, snapshot)
    except OSError as e:
        logger.warning(f"Failed to persist stats to {path}: {e}")

    logger.info(
        f"Stats synced: members={snapshot.member_count}, revenue={snapshot.revenue}"
    )
    return snapshot


async def run_stats_loop(holder: StatsHolder, path: Path, interval_seconds: float) -> None:
    """Re-sync stats every interval for the life of the process.

    The next cycle is scheduled only after the previous one finished, and a
    failed cycle is logged and retried at the next tick. Runs until cancelled.
    """
    while True:
        logger.debug(f"Scheduling next stats sync in {interval_seconds} seconds")
        await asyncio.sleep(interval_seconds)
        try:
            await sync_stats(holder, path)
        except Exception as e:
            logger.error(f"Stats sync failed, retrying next cycle: {e}", exc_info=True)
