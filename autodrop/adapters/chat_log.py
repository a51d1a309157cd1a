"""
Chat/audit log of agent exchanges.
Writes to the Supabase `chat_messages` table when configured, otherwise keeps
a bounded in-memory log. Saving never raises; `record` schedules the write in
the background so callers never wait on the backend.
"""

import asyncio
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

import structlog

from autodrop.adapters.supabase import SupabaseClient
from autodrop.models.schemas import utcnow

logger = structlog.get_logger()


class ChatLogStore:
    """Append-only record of user/agent exchanges"""

    def __init__(self, supabase: Optional[SupabaseClient] = None, max_entries: int = 5000):
        self.supabase = supabase if supabase and supabase.is_configured() else None
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of background writes not yet finished"""
        return len(self._pending)

    def record(self, **entry) -> asyncio.Task:
        """
        Save an exchange without waiting for the write.

        Takes the same keyword arguments as `save_message`. The task is kept
        until it finishes so `flush` can wait for it.
        """
        task = asyncio.get_running_loop().create_task(self.save_message(**entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self):
        """Wait for every scheduled write"""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def save_message(
        self,
        agent_id: str,
        user_id: str,
        message: str,
        response: str,
        language: str = "en",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Record one exchange.

        Returns:
            The stored message id, or None if the write failed
        """
        row = {
            "agent_id": agent_id,
            "user_id": user_id,
            "message": message,
            "response": response,
            "language": language,
            "metadata": metadata or {},
            "timestamp": utcnow().isoformat(),
        }

        if self.supabase:
            try:
                stored = await self.supabase.insert("chat_messages", row)
                return stored.get("id")
            except Exception as e:
                logger.error("chat_message_save_failed", agent_id=agent_id, error=str(e))
                return None

        row["id"] = f"msg-{uuid.uuid4()}"
        async with self._lock:
            self._entries.append(row)
        return row["id"]

    async def history(self, agent_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent exchanges for an agent, newest first"""
        await self.flush()
        if self.supabase:
            return await self.supabase.select(
                "chat_messages", filters={"agent_id": agent_id}, order="timestamp.desc", limit=limit
            )

        async with self._lock:
            matching = [entry for entry in reversed(self._entries) if entry["agent_id"] == agent_id]
        return matching[:limit]
