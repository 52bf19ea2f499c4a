from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock


class Database:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> Lock:
        return self._lock

    def _initialize(self) -> None:
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")

            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS transcriptions (
                  id TEXT PRIMARY KEY,
                  filename TEXT NOT NULL,
                  audio_ref TEXT NOT NULL,
                  source TEXT NOT NULL DEFAULT 'batch',
                  status TEXT NOT NULL DEFAULT 'pending',
                  language TEXT NOT NULL DEFAULT 'es',
                  file_size INTEGER NOT NULL DEFAULT 0,
                  duration REAL,
                  transcript_text TEXT,
                  provider_job_id TEXT,
                  result_path TEXT,
                  metadata TEXT NOT NULL DEFAULT '{}',
                  created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
                  updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
                  completed_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_transcriptions_status_created_at
                ON transcriptions(status, created_at);

                CREATE INDEX IF NOT EXISTS idx_transcriptions_created_at
                ON transcriptions(created_at DESC);

                CREATE VIRTUAL TABLE IF NOT EXISTS transcriptions_fts USING fts5(
                  transcription_id UNINDEXED,
                  filename,
                  transcript_text
                );
                """
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
