"""Cross-device backup of the local cache.

Modules:
    merge  — last-write-wins merge and the BackupMergeEngine
    stores — backup object stores (GitHub Gist, local directory)
"""

from medialog.backup.merge import BackupMergeEngine, merge_entries
from medialog.backup.stores import BackupStore, FileBackupStore, GistBackupStore

__all__ = [
    "BackupMergeEngine",
    "BackupStore",
    "FileBackupStore",
    "GistBackupStore",
    "merge_entries",
]
