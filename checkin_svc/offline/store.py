"""Durable scanner-side storage: the last guest-list snapshot and the outbox
of check-ins made while the server was unreachable."""
from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Sequence
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy.types import DateTime, Integer, String, Text

from ..schemas import OfflineSnapshot

LocalBase = declarative_base()
SNAPSHOT_KEY = "guest-list"

def utcnow():
    return datetime.now(timezone.utc)

class CachedSnapshot(LocalBase):
    __tablename__ = "offline_cache"
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class OutboxEntry(LocalBase):
    __tablename__ = "offline_outbox"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    qr_data: Mapped[str | None] = mapped_column(String(512), nullable=True)
    attendee_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    device_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    queued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_status: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def as_request_body(self) -> dict:
        body: dict = {"qr_data": self.qr_data} if self.qr_data else {"attendee_id": str(self.attendee_id)}
        if self.device_id:
            body["scanner_device_id"] = self.device_id
        return body


class LocalStore:
    def __init__(self, url: str):
        self.engine = create_async_engine(url, echo=False, future=True)
        self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(LocalBase.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # --- snapshot
    async def get_snapshot(self) -> OfflineSnapshot | None:
        async with self.session_maker() as db:
            row = await db.get(CachedSnapshot, SNAPSHOT_KEY)
            return OfflineSnapshot.model_validate_json(row.data) if row else None

    async def set_snapshot(self, snapshot: OfflineSnapshot) -> None:
        async with self.session_maker() as db:
            await db.merge(CachedSnapshot(key=SNAPSHOT_KEY, data=snapshot.model_dump_json(), cached_at=utcnow()))
            await db.commit()

    async def record_local_checkin(
        self,
        attendee_id: uuid.UUID,
        *,
        qr_data: str | None = None,
        device_id: str | None = None,
    ) -> uuid.UUID:
        """Mark the cached attendee present and queue the request, in one transaction."""
        async with self.session_maker() as db:
            row = await db.get(CachedSnapshot, SNAPSHOT_KEY)
            if row is not None:
                snapshot = OfflineSnapshot.model_validate_json(row.data)
                for a in snapshot.attendees:
                    if a.id == attendee_id:
                        a.checked_in = True
                row.data = snapshot.model_dump_json()
            entry = OutboxEntry(
                qr_data=qr_data,
                attendee_id=None if qr_data else attendee_id,
                device_id=device_id,
            )
            db.add(entry)
            await db.commit()
            return entry.id

    # --- outbox
    async def pending(self) -> Sequence[OutboxEntry]:
        async with self.session_maker() as db:
            return (await db.execute(select(OutboxEntry).order_by(OutboxEntry.queued_at.asc()))).scalars().all()

    async def remove(self, entry_id: uuid.UUID) -> None:
        async with self.session_maker() as db:
            await db.execute(delete(OutboxEntry).where(OutboxEntry.id == entry_id))
            await db.commit()

    async def note_attempt(self, entry_id: uuid.UUID, status: str) -> None:
        async with self.session_maker() as db:
            entry = await db.get(OutboxEntry, entry_id)
            if entry is not None:
                entry.attempts += 1
                entry.last_status = status[:64]
                await db.commit()
