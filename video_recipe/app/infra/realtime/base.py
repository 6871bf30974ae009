# video_recipe/app/infra/realtime/base.py
"""
Abstract base class for push change feeds.
A subscription is filtered by exactly one equality predicate (column = value).
Delivery is at-most-once with no replay, so consumers re-fetch state on (re)connect.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

ChangeCallback = Callable[[dict[str, Any]], None]


@dataclass
class Subscription:
    """Handle for one live subscription. Each observer owns its own handle."""
    table: str
    column: str
    value: str
    handle: Any = None
    active: bool = True


class ChangeFeed(ABC):
    """
    Push notifications for row changes.

    Implementations:
    - SupabaseChangeFeed: Supabase Realtime postgres_changes on the async client
    """

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        column: str,
        value: str,
        on_change: ChangeCallback,
    ) -> Subscription:
        """
        Start receiving changes for rows where `column == value`.

        Args:
            table: Table name
            column: Column used for the equality filter
            value: Value the column must equal
            on_change: Called with the changed row (new record) for every event

        Returns:
            Subscription handle to pass to unsubscribe()
        """
        pass

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        """Tear the subscription down. Calling it twice is a no-op."""
        pass
