"""
Ledger retention job.

Removes execution records older than the configured retention window. Meant
to be run once a day from cron or a scheduler; it reports through its return
dict and never raises.

Usage:
    result = await run_retention_cleanup(context.ledger, settings.retention_days)
    if not result['success']:
        logger.error(result['error'])
"""

import logging
from typing import Any, Dict

from campaign_engine.core.errors import EngineError
from campaign_engine.services.ledger import ExecutionLedger

logger = logging.getLogger(__name__)


async def run_retention_cleanup(ledger: ExecutionLedger, retention_days: int) -> Dict[str, Any]:
    """
    Purge ledger records older than `retention_days`.

    Returns:
        Dict with:
        - success: True if the purge ran
        - removed: Number of records deleted (on success)
        - retention_days: The window that was applied
        - error: Error message (on failure)
    """
    try:
        removed = await ledger.purge(retention_days)
    except EngineError as e:
        logger.error(f"Retention cleanup failed: {e}")
        return {
            'success': False,
            'retention_days': retention_days,
            'error': str(e),
        }

    return {
        'success': True,
        'removed': removed,
        'retention_days': retention_days,
    }
