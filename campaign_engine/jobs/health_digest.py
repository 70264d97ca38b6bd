"""
Slack health digest job.

Posts a Block Kit summary of system-wide agent health to a Slack incoming
webhook: overall status, top performers, underperformers and critical
issues from HealthScorer.analyze_system().

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL
  Format: https://hooks.slack.com/services/xxx/yyy/zzz

Usage:
    result = await send_health_digest(context.scorer, settings.slack_webhook_url)
    if result['success']:
        print(f"Digest sent for {result['total_agents']} agents")
    else:
        print(f"Error: {result['error']}")

Dependencies:
    - slack-sdk (WebhookClient)
"""

import logging
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from campaign_engine.core.errors import EngineError
from campaign_engine.models.enums import HealthStatus
from campaign_engine.models.schemas import SystemAnalysis
from campaign_engine.services.health_scorer import HealthScorer

logger = logging.getLogger(__name__)

STATUS_EMOJI: Dict[HealthStatus, str] = {
    HealthStatus.EXCELLENT: ":large_green_circle:",
    HealthStatus.GOOD: ":large_green_circle:",
    HealthStatus.FAIR: ":large_yellow_circle:",
    HealthStatus.POOR: ":large_orange_circle:",
    HealthStatus.CRITICAL: ":red_circle:",
}

MAX_LISTED_AGENTS: int = 5


def format_health_digest(analysis: SystemAnalysis) -> List[Dict[str, Any]]:
    """
    Build Slack Block Kit blocks for a system analysis.

    Returns:
        List of block dicts ready to send via WebhookClient.
    """
    blocks: List[Dict[str, Any]] = []
    emoji = STATUS_EMOJI.get(analysis.overallHealth, "")

    blocks.append({
        "type": "header",
        "text": {
            "type": "plain_text",
            "text": f"Agent Health Digest ({analysis.windowDays}-day window)",
        },
    })
    blocks.append({"type": "divider"})

    blocks.append({
        "type": "section",
        "text": {
            "type": "mrkdwn",
            "text": (
                f"{emoji} *Overall health:* {analysis.overallHealth.value}\n"
                f"*Agents:* {analysis.totalAgents}  |  "
                f"*Avg health score:* {analysis.averageHealthScore:.0f}  |  "
                f"*Avg success rate:* {analysis.averageSuccessRate:.1f}%\n"
                f"*Total cost:* ${analysis.totalCost:,.2f} (trend: {analysis.costTrend.value})"
            ),
        },
    })

    if analysis.topPerformers:
        lines = [
            f"• {p.agentName}: {p.healthScore}"
            for p in analysis.topPerformers[:MAX_LISTED_AGENTS]
        ]
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*Top performers*\n" + "\n".join(lines)},
        })

    if analysis.underperformers:
        lines = []
        for agent in analysis.underperformers[:MAX_LISTED_AGENTS]:
            issues = "; ".join(agent.issues) if agent.issues else "no specific issues"
            lines.append(f"• {agent.agentName} ({agent.healthScore}): {issues}")
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*Underperformers*\n" + "\n".join(lines)},
        })

    blocks.append({"type": "divider"})

    if analysis.criticalIssues:
        lines = [
            f":rotating_light: *{issue.agentId}*: {issue.issue} ({issue.impact})"
            for issue in analysis.criticalIssues
        ]
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*Critical issues*\n" + "\n".join(lines)},
        })
    else:
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": ":white_check_mark: No critical issues"},
        })

    blocks.append({
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": f"Generated {analysis.generatedAt.strftime('%Y-%m-%d %H:%M UTC')}",
            }
        ],
    })
    return blocks


async def send_health_digest(
    scorer: HealthScorer,
    webhook_url: Optional[str],
    window_days: Optional[int] = None,
    client: Optional[WebhookClient] = None,
) -> Dict[str, Any]:
    """
    Send the system health digest to Slack.

    Args:
        scorer: Health scorer used to build the system analysis.
        webhook_url: Slack incoming webhook URL.
        window_days: Analysis window; the ledger default when omitted.
        client: Pre-built WebhookClient (tests inject one).

    Returns:
        Dict with:
        - success: True if the digest was sent or skipped
        - skipped: True when there were no agents to report
        - total_agents / overall_health: Summary figures (on send)
        - error: Error message (on failure)

    Raises:
        No exceptions are raised - all errors are captured in the return dict.
    """
    if not webhook_url and client is None:
        return {
            'success': False,
            'error': 'SLACK_WEBHOOK_URL not configured. Set this environment variable to enable health digests.',
        }

    try:
        analysis = await scorer.analyze_system(window_days)
    except EngineError as e:
        logger.error(f"Health digest analysis failed: {e}")
        return {'success': False, 'error': f'Failed to analyze system health: {e}'}

    if analysis.totalAgents == 0:
        return {
            'success': True,
            'skipped': True,
            'reason': 'No agent activity in the analysis window',
        }

    blocks = format_health_digest(analysis)

    try:
        webhook = client or WebhookClient(webhook_url)
        response = webhook.send(blocks=blocks)
    except Exception as e:
        logger.error(f"Failed to send health digest: {e}")
        return {'success': False, 'error': f'Failed to send Slack message: {e}'}

    if response.status_code != 200:
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}',
        }

    logger.info(f"Sent health digest for {analysis.totalAgents} agents")
    return {
        'success': True,
        'total_agents': analysis.totalAgents,
        'overall_health': analysis.overallHealth.value,
        'critical_issues': len(analysis.criticalIssues),
    }
