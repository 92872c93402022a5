SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS content_embeddings (
    content_id TEXT PRIMARY KEY,
    media_type TEXT NOT NULL DEFAULT 'movie',
    dimension INTEGER NOT NULL,
    vector BLOB NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_content_embeddings_dimension
    ON content_embeddings(dimension);

CREATE TABLE IF NOT EXISTS reasoning_patterns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    dominant_strategy TEXT NOT NULL,
    context_key TEXT,
    strategy_weights TEXT NOT NULL DEFAULT '{}',
    item_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_reasoning_patterns_user
    ON reasoning_patterns(user_id);
"""
