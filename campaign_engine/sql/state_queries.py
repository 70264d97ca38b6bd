"""
State Queries Module for the campaign decision engine.

Provides PostgreSQL statements for the persisted engine state: campaign
strategies, A/B experiments and the learnings recorded when an experiment
declares a winner. Each entity is stored as a JSONB document (its pydantic
serialization) with a few columns pulled out for filtering.
"""

# =============================================================================
# CONSTANTS
# =============================================================================

STRATEGY_TABLE: str = "campaign_strategy"
EXPERIMENT_TABLE: str = "ab_experiment"
LEARNING_TABLE: str = "experiment_learning"

# Learnings returned to the planner when none is requested explicitly
DEFAULT_LEARNING_LIMIT: int = 10

# =============================================================================
# SCHEMA
# =============================================================================

CREATE_STATE_TABLES: str = f"""
CREATE TABLE IF NOT EXISTS {STRATEGY_TABLE} (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE TABLE IF NOT EXISTS {EXPERIMENT_TABLE} (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL,
    status TEXT NOT NULL,
    payload JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_{EXPERIMENT_TABLE}_status
    ON {EXPERIMENT_TABLE} (status);
CREATE TABLE IF NOT EXISTS {LEARNING_TABLE} (
    experiment_id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL,
    payload JSONB NOT NULL,
    declared_at TIMESTAMPTZ NOT NULL
);
"""

# =============================================================================
# STRATEGIES
# =============================================================================

UPSERT_STRATEGY: str = f"""
INSERT INTO {STRATEGY_TABLE} (id, status, payload, created_at, updated_at)
VALUES ($1, $2, $3::jsonb, $4, $5)
ON CONFLICT (id) DO UPDATE SET
    status = EXCLUDED.status,
    payload = EXCLUDED.payload,
    updated_at = EXCLUDED.updated_at
"""

SELECT_STRATEGY: str = f"SELECT payload FROM {STRATEGY_TABLE} WHERE id = $1"

SELECT_ALL_STRATEGIES: str = f"SELECT payload FROM {STRATEGY_TABLE} ORDER BY created_at, id"

DELETE_STRATEGY: str = f"DELETE FROM {STRATEGY_TABLE} WHERE id = $1 RETURNING id"

# =============================================================================
# EXPERIMENTS
# =============================================================================

UPSERT_EXPERIMENT: str = f"""
INSERT INTO {EXPERIMENT_TABLE} (id, campaign_id, status, payload, updated_at)
VALUES ($1, $2, $3, $4::jsonb, $5)
ON CONFLICT (id) DO UPDATE SET
    status = EXCLUDED.status,
    payload = EXCLUDED.payload,
    updated_at = EXCLUDED.updated_at
"""

SELECT_EXPERIMENT: str = f"SELECT payload FROM {EXPERIMENT_TABLE} WHERE id = $1"

SELECT_EXPERIMENTS_BY_STATUS: str = f"""
SELECT payload FROM {EXPERIMENT_TABLE}
WHERE status = $1
ORDER BY updated_at, id
"""

# =============================================================================
# LEARNINGS
# =============================================================================

UPSERT_LEARNING: str = f"""
INSERT INTO {LEARNING_TABLE} (experiment_id, campaign_id, payload, declared_at)
VALUES ($1, $2, $3::jsonb, $4)
ON CONFLICT (experiment_id) DO UPDATE SET
    payload = EXCLUDED.payload,
    declared_at = EXCLUDED.declared_at
"""

SELECT_RECENT_LEARNINGS: str = f"""
SELECT payload FROM {LEARNING_TABLE}
ORDER BY declared_at DESC
LIMIT $1
"""
