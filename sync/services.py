"""Async views of ShiftLogSync for the session engine."""

import asyncio
from typing import Any, Dict, List

from sync.supabase_client import ShiftLogSync
from tracking.tasks import Task


class SupabaseTaskListService:
    """Task list service backed by the Supabase "tasks" table."""

    def __init__(self, client: ShiftLogSync):
        self._client = client

    async def get_all(self) -> List[Task]:
        rows = await asyncio.to_thread(self._client.fetch_tasks)
        return [Task.from_dict(row) for row in rows]


class SupabaseScreenshotCountService:
    """Remote screenshot count service."""

    def __init__(self, client: ShiftLogSync):
        self._client = client

    async def get_today_count(self) -> Dict[str, int]:
        count = await asyncio.to_thread(self._client.get_today_screenshot_count)
        return {"count": count}


class SupabaseConfigService:
    """Config service; falls back to cached or default settings offline."""

    def __init__(self, client: ShiftLogSync):
        self._client = client

    async def get(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._client.fetch_config)
