"""Market data, analyst recommendations and portfolio rebalancing."""
