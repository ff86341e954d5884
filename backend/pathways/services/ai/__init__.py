"""
Oracle-backed agents and the pathway orchestrator.

- The oracle classifies, scores relevance and writes narratives
- Deterministic code extracts keywords, plans lookups, reflects and aggregates

Every agent owns a fallback, so an unavailable oracle degrades answers
instead of failing requests.
"""
