"""Indicator calculation, signal aggregation, position sizing and analysis orchestration."""
