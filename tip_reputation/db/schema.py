SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS creators (
    id TEXT PRIMARY KEY,
    name TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    tier TEXT NOT NULL DEFAULT 'UNRATED',
    active_tips INTEGER NOT NULL DEFAULT 0,
    completed_tips INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS stocks (
    symbol TEXT NOT NULL,
    exchange TEXT NOT NULL,
    name TEXT,
    last_price REAL,
    last_price_at TEXT,
    PRIMARY KEY (symbol, exchange)
);

CREATE TABLE IF NOT EXISTS tips (
    id TEXT PRIMARY KEY,
    creator_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    exchange TEXT NOT NULL DEFAULT 'NSE',
    direction TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    entry_price REAL NOT NULL,
    target1 REAL NOT NULL,
    target2 REAL,
    target3 REAL,
    stop_loss REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    tip_timestamp TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    closed_price REAL,
    closed_at TEXT,
    return_pct REAL,
    risk_reward_ratio REAL,
    target1_hit_at TEXT,
    target2_hit_at TEXT,
    target3_hit_at TEXT,
    stoploss_hit_at TEXT,
    status_updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_tips_status ON tips (status);
CREATE INDEX IF NOT EXISTS idx_tips_creator_status ON tips (creator_id, status);

CREATE TABLE IF NOT EXISTS creator_scores (
    creator_id TEXT PRIMARY KEY,
    accuracy_score REAL NOT NULL,
    risk_adjusted_score REAL NOT NULL,
    consistency_score REAL NOT NULL,
    volume_factor_score REAL NOT NULL,
    rmt_score REAL NOT NULL,
    confidence_interval REAL NOT NULL,
    accuracy_rate REAL NOT NULL,
    avg_return_pct REAL NOT NULL,
    avg_risk_reward_ratio REAL NOT NULL,
    win_streak INTEGER NOT NULL,
    loss_streak INTEGER NOT NULL,
    best_tip_return_pct REAL,
    worst_tip_return_pct REAL,
    intraday_accuracy REAL,
    swing_accuracy REAL,
    positional_accuracy REAL,
    long_term_accuracy REAL,
    total_scored_tips INTEGER NOT NULL,
    score_period_start TEXT NOT NULL,
    score_period_end TEXT NOT NULL,
    calculated_at TEXT NOT NULL,
    tier TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS score_snapshots (
    creator_id TEXT NOT NULL,
    snapshot_date TEXT NOT NULL,
    rmt_score REAL NOT NULL,
    accuracy_rate REAL NOT NULL,
    total_scored_tips INTEGER NOT NULL,
    PRIMARY KEY (creator_id, snapshot_date)
);

CREATE TABLE IF NOT EXISTS job_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_name TEXT NOT NULL,
    trigger_type TEXT NOT NULL,
    creator_id TEXT,
    attempt INTEGER NOT NULL DEFAULT 1,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    error_message TEXT,
    result_json TEXT
);
"""
