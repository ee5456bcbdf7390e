"""HTTP layer for Energy Insights."""
