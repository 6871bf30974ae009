# video_recipe/app/infra/realtime/supabase_feed.py
"""
Supabase Realtime change feed (postgres_changes) on the async client.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Optional
from uuid import uuid4

from supabase import AsyncClient, acreate_client

from video_recipe.app.infra.realtime.base import ChangeCallback, ChangeFeed, Subscription

logger = logging.getLogger(__name__)


def extract_record(payload: Any) -> Optional[dict[str, Any]]:
    """Pull the new row out of a postgres_changes payload."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("record"), dict):
        return data["record"]
    for key in ("new", "record"):
        if isinstance(payload.get(key), dict) and payload[key]:
            return payload[key]
    return None


class SupabaseChangeFeed(ChangeFeed):
    def __init__(self, client: AsyncClient | None = None):
        self._client = client

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            url = os.getenv("SUPABASE_URL")
            key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            if not url or not key:
                raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
            self._client = await acreate_client(url, key)
        return self._client

    async def subscribe(
        self,
        table: str,
        column: str,
        value: str,
        on_change: ChangeCallback,
    ) -> Subscription:
        client = await self._get_client()

        def _handle(payload: Any) -> None:
            record = extract_record(payload)
            if record is None:
                logger.debug("Ignoring change without record: table=%s", table)
                return
            on_change(record)

        channel = client.channel(f"{table}:{column}={value}:{uuid4().hex[:8]}")
        channel.on_postgres_changes(
            "*",
            schema="public",
            table=table,
            filter=f"{column}=eq.{value}",
            callback=_handle,
        )
        await channel.subscribe()

        logger.info("Subscribed to %s where %s=%s", table, column, value)
        return Subscription(table=table, column=column, value=value, handle=channel)

    async def unsubscribe(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        client = await self._get_client()
        await client.remove_channel(subscription.handle)
        logger.info(
            "Unsubscribed from %s where %s=%s",
            subscription.table,
            subscription.column,
            subscription.value,
        )
