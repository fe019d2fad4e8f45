from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import aiosqlite  # type: ignore[reportMissingImports]

logger = logging.getLogger(__name__)

TRIP_STATUSES = ("active", "completed", "cancelled")


class Database:
    def __init__(self, path: str) -> None:
        self._path = path
        self._conn: Any | None = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = await aiosqlite.connect(self._path)
        self._conn = conn
        # Pragmas for reliability
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA synchronous=NORMAL;")

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trips (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                origin TEXT NOT NULL,
                destination TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active',
                total_steps INTEGER NOT NULL DEFAULT 0,
                completed_steps INTEGER NOT NULL DEFAULT 0,
                hazards_seen INTEGER NOT NULL DEFAULT 0,
                started_utc TEXT NOT NULL,
                ended_utc TEXT
            )
            """
        )
        await conn.commit()
        logger.info("Database initialized at %s", self._path)

    async def stop(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def insert_trip(self, origin: str, destination: str, total_steps: int, ts_utc_iso: str) -> int:
        assert self._conn is not None
        async with self._lock:
            cursor = await self._conn.execute(
                "INSERT INTO trips (origin, destination, total_steps, started_utc) VALUES (?, ?, ?, ?)",
                (origin, destination, total_steps, ts_utc_iso),
            )
            await self._conn.commit()
            return int(cursor.lastrowid)

    async def oldest_active_trip_id(self) -> Optional[int]:
        assert self._conn is not None
        async with self._lock:
            async with self._conn.execute("SELECT id FROM trips WHERE status='active' ORDER BY id ASC LIMIT 1") as cursor:
                row = await cursor.fetchone()
                return int(row[0]) if row else None

    async def add_trip_hazards(self, trip_id: int, count: int) -> None:
        assert self._conn is not None
        async with self._lock:
            await self._conn.execute("UPDATE trips SET hazards_seen = hazards_seen + ? WHERE id=?", (count, trip_id))
            await self._conn.commit()

    async def finish_trip(self, trip_id: int, status: str, completed_steps: int, ts_utc_iso: str) -> None:
        if status not in TRIP_STATUSES:
            raise ValueError(f"Unknown trip status {status!r}")
        assert self._conn is not None
        async with self._lock:
            await self._conn.execute(
                "UPDATE trips SET status=?, completed_steps=?, ended_utc=? WHERE id=?",
                (status, completed_steps, ts_utc_iso, trip_id),
            )
            await self._conn.commit()

    async def cancel_active_trips(self, ts_utc_iso: str) -> int:
        """Close trips left 'active' by a previous run."""
        assert self._conn is not None
        async with self._lock:
            cursor = await self._conn.execute(
                "UPDATE trips SET status='cancelled', ended_utc=? WHERE status='active'",
                (ts_utc_iso,),
            )
            await self._conn.commit()
            return cursor.rowcount

    async def list_trips(self, limit: int = 50) -> List[Dict[str, Any]]:
        assert self._conn is not None
        async with self._lock:
            async with self._conn.execute(
                "SELECT id, origin, destination, status, total_steps, completed_steps, hazards_seen, started_utc, ended_utc "
                "FROM trips ORDER BY id DESC LIMIT ?",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
                return [
                    {
                        "id": r[0],
                        "origin": r[1],
                        "destination": r[2],
                        "status": r[3],
                        "total_steps": r[4],
                        "completed_steps": r[5],
                        "hazards_seen": r[6],
                        "started_utc": r[7],
                        "ended_utc": r[8],
                    }
                    for r in rows
                ]
