"""Sync engine for medialog.

Modules:
    pipeline      — optimistic create/update/delete with rollback
    coordinator   — periodic and foreground-triggered incremental pulls
    cursor        — per-partition sync cursors
    config_loader — load/validate/hot-reload sync_config.yaml
"""
