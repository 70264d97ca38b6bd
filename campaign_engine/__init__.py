"""
Campaign Decision Engine.

Performance-driven decision engine for marketing campaigns run by a team of
content, social, email, ad and research agents.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, errors, retry policy, database and wiring
    - models: Pydantic schemas and enums
    - services: Execution Ledger, Health Scorer, Strategy Planner, Significance Engine
    - jobs: Retention cleanup, Slack health digest, experiment monitor
    - sql: Parameterized SQL for the PostgreSQL adapters
"""

__version__ = "1.0.0"
