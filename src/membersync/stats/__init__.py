"""Active-subscription stats."""

from membersync.stats.aggregator import StatsHolder, StatsSnapshot, run_stats_loop, sync_stats

__all__ = ["StatsHolder", "StatsSnapshot", "run_stats_loop", "sync_stats"]
