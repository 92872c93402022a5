import json
import logging
import sqlite3
import threading

import sqlite_vec

from mediarec.data.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


class Repository:
    """SQLite store for content embeddings and reasoning-bank patterns.

    The connection is shared between the event loop and worker threads
    (``asyncio.to_thread``), so every statement runs under one lock.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._load_sqlite_vec()
        self._init_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def _load_sqlite_vec(self) -> None:
        try:
            self._conn.enable_load_extension(True)
            sqlite_vec.load(self._conn)
            self._conn.enable_load_extension(False)
            self._conn.execute("SELECT vec_version()")
            logger.info("sqlite-vec loaded successfully")
        except Exception as exc:
            raise RuntimeError(
                "sqlite-vec is required for content vector search, but could not "
                "be loaded in SQLite"
            ) from exc

    # -- content embeddings --------------------------------------------------

    def upsert_content_embedding(
        self,
        content_id: str,
        media_type: str,
        vector_blob: bytes,
        dimension: int,
    ) -> None:
        """Store *vector_blob* (little-endian float32) for a content item."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO content_embeddings(
                    content_id, media_type, dimension, vector, updated_at)
                VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(content_id) DO UPDATE SET
                    media_type = excluded.media_type,
                    dimension = excluded.dimension,
                    vector = excluded.vector,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (content_id, media_type, dimension, vector_blob),
            )
            self._conn.commit()

    def delete_content_embedding(self, content_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM content_embeddings WHERE content_id = ?", (content_id,)
            )
            self._conn.commit()
            return cur.rowcount > 0

    def count_content_embeddings(self) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS cnt FROM content_embeddings"
            ).fetchone()
        return int(row["cnt"]) if row else 0

    def clear_content_embeddings(self) -> None:
        logger.info("Clearing all content embeddings from database")
        with self._lock:
            self._conn.execute("DELETE FROM content_embeddings")
            self._conn.commit()

    def search_content_by_embedding(
        self, query_vector: bytes, dimension: int, top_k: int
    ) -> list[dict]:
        """Nearest content by cosine distance among vectors of *dimension*."""
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT
                    content_id,
                    media_type,
                    vec_distance_cosine(vector, ?) AS cosine_distance
                FROM content_embeddings
                WHERE dimension = ?
                ORDER BY cosine_distance ASC, content_id ASC
                LIMIT ?
                """,
                (query_vector, dimension, top_k),
            )
            results = [dict(row) for row in cur.fetchall()]
        logger.debug(
            "Embedding search returned %d result(s) (dimension=%d, top_k=%d)",
            len(results),
            dimension,
            top_k,
        )
        return results

    # -- reasoning patterns --------------------------------------------------

    def insert_pattern(
        self,
        user_id: str,
        dominant_strategy: str,
        strategy_weights: dict[str, float],
        context_key: str | None,
        item_count: int,
        created_at: str,
    ) -> int:
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO reasoning_patterns(
                    user_id, dominant_strategy, context_key,
                    strategy_weights, item_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    dominant_strategy,
                    context_key,
                    json.dumps(strategy_weights, sort_keys=True),
                    item_count,
                    created_at,
                ),
            )
            self._conn.commit()
        assert cur.lastrowid is not None
        return int(cur.lastrowid)

    def list_patterns(
        self,
        user_id: str | None = None,
        dominant_strategy: str | None = None,
        context_key: str | None = None,
        limit: int = 100,
    ) -> list[dict]:
        clauses: list[str] = []
        params: list[object] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if dominant_strategy is not None:
            clauses.append("dominant_strategy = ?")
            params.append(dominant_strategy)
        if context_key is not None:
            clauses.append("context_key = ?")
            params.append(context_key)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT * FROM reasoning_patterns
            {where}
            ORDER BY id DESC
            LIMIT ?
        """
        with self._lock:
            cur = self._conn.execute(query, (*params, limit))
            rows = [dict(row) for row in cur.fetchall()]
        for row in rows:
            row["strategy_weights"] = json.loads(row["strategy_weights"] or "{}")
        return rows
