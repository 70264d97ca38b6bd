"""
SQL statements for the PostgreSQL adapters.

Submodules:
    ledger_queries: execution_record table DDL, insert/patch statements and
                    builders for filtered record queries, purges and counts.
    state_queries:  campaign_strategy, ab_experiment and experiment_learning
                    tables with JSONB payload columns.

All statements are parameterized ($1, $2, ...); builders return (sql, params).
"""

from campaign_engine.sql.ledger_queries import (
    LEDGER_TABLE,
    SORT_COLUMNS,
    CREATE_LEDGER_TABLE,
    INSERT_RECORD,
    PATCH_RECORD,
    SELECT_RECORD_BY_ID,
    get_delete_older_than_query,
    get_record_query,
    get_count_since_query,
)
from campaign_engine.sql.state_queries import (
    STRATEGY_TABLE,
    EXPERIMENT_TABLE,
    LEARNING_TABLE,
    DEFAULT_LEARNING_LIMIT,
    CREATE_STATE_TABLES,
)

__all__ = [
    # Ledger
    "LEDGER_TABLE",
    "SORT_COLUMNS",
    "CREATE_LEDGER_TABLE",
    "INSERT_RECORD",
    "PATCH_RECORD",
    "SELECT_RECORD_BY_ID",
    "get_delete_older_than_query",
    "get_record_query",
    "get_count_since_query",
    # State
    "STRATEGY_TABLE",
    "EXPERIMENT_TABLE",
    "LEARNING_TABLE",
    "DEFAULT_LEARNING_LIMIT",
    "CREATE_STATE_TABLES",
]
