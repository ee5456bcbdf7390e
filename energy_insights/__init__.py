"""
Energy Insights

Read-only analytics over power-plant net generation, grouped by U.S. state
and year:
1. Top-N plants (nationwide or per state) with share of state generation
2. State summaries with share of national generation
3. Redis-backed result caching with prefix invalidation and warming
4. Offline eGRID ingestion that leaves store, aggregate view and cache consistent
"""

__version__ = "0.1.0"
