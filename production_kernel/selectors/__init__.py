"""Read-only report selectors."""

from production_kernel.selectors.rollup_selector import DailyRollupAggregator, EntryFilters

__all__ = ["DailyRollupAggregator", "EntryFilters"]
