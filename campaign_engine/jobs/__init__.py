"""
Background and scheduled jobs.

- retention: purge ledger records older than the retention window
- health_digest: post the system health analysis to Slack
- experiment_monitor: periodic re-evaluation of running A/B experiments

Scheduled jobs report through a result dict and never raise:

    result = await run_retention_cleanup(context.ledger, settings.retention_days)
    result = await send_health_digest(context.scorer, settings.slack_webhook_url)
"""

from campaign_engine.jobs.retention import run_retention_cleanup
from campaign_engine.jobs.health_digest import send_health_digest, format_health_digest
from campaign_engine.jobs.experiment_monitor import ExperimentMonitor

__all__ = [
    'run_retention_cleanup',     # Ledger retention purge
    'send_health_digest',        # Slack system health digest
    'format_health_digest',      # Block Kit formatting for the digest
    'ExperimentMonitor',         # Periodic experiment evaluation
]
