"""Reminder registry and durable store backends.

The registry is the in-memory source of truth while the scheduler runs.
Durable stores mirror it as a list of ``Reminder.to_record()`` dicts plus
the id counter, and are written after every create/edit/delete/fire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.scheduler.errors import StoreError
from shared.config import Settings
from shared.models.reminder import ReminderRow, StoreState
from shared.schemas.reminders import Reminder

logger = structlog.get_logger()

COUNTER_KEY = "reminder_counter"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ReminderRegistry:
    """Reminders keyed by id plus the monotonic id counter.

    ``counter`` is the id the next created reminder receives.  Iteration
    always goes through ``all()``, which returns a list snapshot so callers
    may mutate the registry while walking it.
    """

    def __init__(self) -> None:
        self._reminders: dict[int, Reminder] = {}
        self.counter = 1
        # False until a durable snapshot has been applied
        self.loaded = False

    def __len__(self) -> int:
        return len(self._reminders)

    def __contains__(self, reminder_id: int) -> bool:
        return reminder_id in self._reminders

    def next_id(self) -> int:
        reminder_id = self.counter
        self.counter += 1
        return reminder_id

    def add(self, reminder: Reminder) -> None:
        self._reminders[reminder.id] = reminder
        self.counter = max(self.counter, reminder.id + 1)

    def replace(self, reminder: Reminder) -> None:
        self._reminders[reminder.id] = reminder

    def get(self, reminder_id: int) -> Reminder | None:
        return self._reminders.get(reminder_id)

    def remove(self, reminder_id: int) -> Reminder | None:
        return self._reminders.pop(reminder_id, None)

    def all(self) -> list[Reminder]:
        return sorted(self._reminders.values(), key=lambda r: r.id)

    def load(self, snapshot: StoreSnapshot) -> int:
        """Replace the contents with a durable snapshot; returns the number loaded.

        Records that no longer validate are logged and skipped.
        """
        self._reminders.clear()
        for record in snapshot.reminders:
            try:
                reminder = Reminder.from_record(record)
            except ValidationError as e:
                logger.error(
                    "reminder_record_invalid",
                    reminder_id=record.get("id"),
                    error=str(e),
                )
                continue
            self._reminders[reminder.id] = reminder

        highest = max(self._reminders, default=0)
        self.counter = max(snapshot.counter, highest + 1, 1)
        self.loaded = True
        return len(self._reminders)

    def merge(self, snapshot: StoreSnapshot) -> list[Reminder]:
        """Fold a late-arriving snapshot into reminders created since startup.

        Used when the startup load failed and the registry has been running
        from empty.  In-memory reminders keep their ids; a stored reminder
        whose id was reused meanwhile is moved to a fresh id.  Returns the
        stored reminders that were added.
        """
        stored: list[Reminder] = []
        for record in snapshot.reminders:
            try:
                stored.append(Reminder.from_record(record))
            except ValidationError as e:
                logger.error(
                    "reminder_record_invalid",
                    reminder_id=record.get("id"),
                    error=str(e),
                )

        highest = max([r.id for r in stored] + list(self._reminders), default=0)
        self.counter = max(self.counter, snapshot.counter, highest + 1, 1)

        added: list[Reminder] = []
        for reminder in stored:
            if reminder.id in self._reminders:
                new_id = self.next_id()
                logger.warning("reminder_record_renumbered", old_id=reminder.id, new_id=new_id)
                reminder = reminder.model_copy(update={"id": new_id})
            self._reminders[reminder.id] = reminder
            added.append(reminder)

        self.loaded = True
        return added

    def to_records(self) -> list[dict[str, Any]]:
        return [r.to_record() for r in self.all()]


# ---------------------------------------------------------------------------
# Durable stores
# ---------------------------------------------------------------------------


@dataclass
class StoreSnapshot:
    reminders: list[dict[str, Any]] = field(default_factory=list)
    counter: int = 1


class Store(Protocol):
    async def load_all(self) -> StoreSnapshot: ...

    async def save_all(self, records: list[dict[str, Any]], counter: int) -> bool: ...

    async def close(self) -> None: ...


class DatabaseStore:
    """SQLAlchemy-backed store: one row per reminder plus a counter row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def load_all(self) -> StoreSnapshot:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(ReminderRow).order_by(ReminderRow.id))
                rows = list(result.scalars().all())
                state = await session.get(StoreState, COUNTER_KEY)
        except Exception as e:
            raise StoreError(f"Failed to load reminders: {e}") from e

        snapshot = StoreSnapshot(
            reminders=[dict(row.payload) for row in rows],
            counter=state.value if state else 1,
        )
        logger.info("reminders_loaded", backend="database", count=len(rows))
        return snapshot

    async def save_all(self, records: list[dict[str, Any]], counter: int) -> bool:
        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                await session.execute(delete(ReminderRow))
                for record in records:
                    next_run = record.get("next_run")
                    session.add(
                        ReminderRow(
                            id=record["id"],
                            payload=record,
                            is_active=bool(record.get("is_active")),
                            next_run_at=datetime.fromisoformat(next_run) if next_run else None,
                            updated_at=now,
                        )
                    )
                await session.merge(StoreState(key=COUNTER_KEY, value=counter))
                await session.commit()
        except Exception as e:
            logger.error("reminders_save_failed", backend="database", error=str(e))
            return False

        logger.info("reminders_saved", backend="database", count=len(records))
        return True

    async def close(self) -> None:
        return None


class JsonBinStore:
    """JSONBin.io document store holding ``{"reminders": [...], "counter": n}``."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.bin_id = settings.jsonbin_bin_id
        self.api_key = settings.jsonbin_api_key
        self.base_url = settings.jsonbin_base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=15.0)

    @property
    def configured(self) -> bool:
        return bool(self.bin_id and self.api_key)

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-Master-Key": self.api_key, "Content-Type": "application/json"}

    async def load_all(self) -> StoreSnapshot:
        if not self.configured:
            raise StoreError("JSONBin credentials not configured")

        try:
            resp = await self._client.get(
                f"{self.base_url}/b/{self.bin_id}/latest",
                headers=self._headers,
            )
            resp.raise_for_status()
            data = resp.json().get("record") or {}
        except (httpx.HTTPError, ValueError) as e:
            raise StoreError(f"Failed to load reminders from JSONBin: {e}") from e

        reminders = data.get("reminders")
        snapshot = StoreSnapshot(
            reminders=reminders if isinstance(reminders, list) else [],
            counter=int(data.get("counter") or 1),
        )
        logger.info("reminders_loaded", backend="jsonbin", count=len(snapshot.reminders))
        return snapshot

    async def save_all(self, records: list[dict[str, Any]], counter: int) -> bool:
        if not self.configured:
            logger.error("reminders_save_failed", backend="jsonbin", error="credentials not configured")
            return False

        try:
            resp = await self._client.put(
                f"{self.base_url}/b/{self.bin_id}",
                headers=self._headers,
                json={"reminders": records, "counter": counter},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("reminders_save_failed", backend="jsonbin", error=str(e))
            return False

        logger.info("reminders_saved", backend="jsonbin", count=len(records))
        return True

    async def close(self) -> None:
        await self._client.aclose()


def build_store(settings: Settings, session_factory: async_sessionmaker[AsyncSession] | None = None) -> Store:
    """Pick the durable store configured by ``store_backend``."""
    if settings.store_backend == "jsonbin":
        return JsonBinStore(settings)
    if settings.store_backend == "database":
        if session_factory is None:
            from shared.database import get_session_factory

            session_factory = get_session_factory()
        return DatabaseStore(session_factory)
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")
