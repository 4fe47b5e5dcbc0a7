"""
Slack Connector for the Vault Provisioner.

Renders provisioning results and retention reports in Slack, either as
channel messages or as deferred replies to slash commands.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from slack_sdk.webhook import WebhookClient

from ..config import SlackSettings
from ..models import MembershipRecord, RetentionSummary, UserFacingResult

logger = logging.getLogger(__name__)

LEVEL_EMOJI = {
    "success": ":white_check_mark:",
    "info": ":information_source:",
    "warning": ":warning:",
    "error": ":x:",
}


def result_blocks(result: UserFacingResult) -> List[Dict[str, Any]]:
    """Block Kit rendering of a user-facing result."""
    emoji = LEVEL_EMOJI.get(result.level, "")
    blocks: List[Dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": f"{emoji} *{result.title}*".strip()}},
        {"type": "section", "text": {"type": "mrkdwn", "text": result.description}},
    ]
    if result.email:
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"Email: {result.email}"}]})
    return blocks


def report_text(summary: RetentionSummary, members: Optional[List[MembershipRecord]] = None) -> str:
    """Plain-text weekly report of the retention policy."""
    lines = [
        f"*Vault retention report* ({'dry run' if summary.dry_run else 'cleanup'})",
        f"Members: {summary.total_users}",
    ]

    if summary.dry_run:
        lines.append(f"Would remove: {len(summary.pending_deletions)}")
    else:
        lines.append(f"Removed: {summary.deleted}")

    reasons = Counter(v.reason.value for v in summary.pending_deletions)
    for reason, count in sorted(reasons.items()):
        lines.append(f"  • {reason}: {count}")

    if members:
        statuses = Counter(m.status.label for m in members)
        lines.append("Status: " + ", ".join(f"{k} {v}" for k, v in sorted(statuses.items())))

    if summary.errors:
        lines.append(f"Errors: {len(summary.errors)}")
        lines.extend(f"  • {error}" for error in summary.errors[:10])

    return "\n".join(lines)


class SlackNotifier:
    """Best-effort delivery of results to Slack. Failures are logged, never raised."""

    def __init__(self, settings: SlackSettings, client: Optional[WebClient] = None):
        self.settings = settings
        self.client = client or (WebClient(token=settings.bot_token) if settings.bot_token else None)

    def respond(self, response_url: str, result: UserFacingResult) -> bool:
        """Answer a slash command through its response URL."""
        try:
            response = WebhookClient(response_url).send(
                text=result.title,
                blocks=result_blocks(result),
                response_type="ephemeral",
            )
        except Exception as e:
            logger.error(f"Failed to deliver slash command reply: {e}")
            return False

        if response.status_code != 200:
            # Interaction expired or response URL already used
            logger.warning(f"Slash command reply not delivered ({response.status_code}): {response.body}")
            return False
        return True

    def post_retention_report(self, summary: RetentionSummary,
                              members: Optional[List[MembershipRecord]] = None) -> bool:
        """Post the retention report to the configured report channel."""
        if not self.client or not self.settings.report_channel:
            logger.info("No Slack report channel configured, skipping retention report")
            return False

        try:
            self.client.chat_postMessage(channel=self.settings.report_channel,
                                         text=report_text(summary, members))
        except SlackApiError as e:
            logger.error(f"Failed to post retention report: {e}")
            return False

        logger.info(f"Posted retention report to {self.settings.report_channel}")
        return True
