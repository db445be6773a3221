"""Sync pipeline for wearsync.

Modules:
    orchestrator — Multi-day, multi-category sync run (sync_to_wearables_data)
    dedup        — Conflict-key deduplication, upsert SQL, run locks + debounce
    persistence  — asyncpg gateway for batch upserts into wearables_data
"""
