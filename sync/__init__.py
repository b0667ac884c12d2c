"""
Sync package - Supabase authentication and data synchronisation.

Provides ShiftLogSync for auth, tasks, screenshot counts, settings fetch
and time log upload, plus async service adapters for the engine.
"""

from sync.supabase_client import ShiftLogSync, SyncError

__all__ = ["ShiftLogSync", "SyncError"]
