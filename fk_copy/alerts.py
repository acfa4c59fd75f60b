import logging
import os
from typing import Optional

import requests

from fk_copy.report import CopyReport

log = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 2000
TRUNCATED_MARK = "\n… (truncated)"

def _fit_message(text: str) -> str:
    if len(text) <= MAX_MESSAGE_CHARS:
        return text
    return text[: MAX_MESSAGE_CHARS - len(TRUNCATED_MARK)] + TRUNCATED_MARK

def format_run_alert(report: CopyReport) -> str:
    if report.ok:
        header = f"⚠️ **Data copy needs attention**: `{report.source_db}` → `{report.target_db}`"
    else:
        header = f"❗️ **Data copy failed**: `{report.source_db}` → `{report.target_db}`"
    lines = report.summary_lines()[1:]
    budget = MAX_MESSAGE_CHARS - len(header) - 48   # fences plus the omitted-tables note
    # per-table lines go first; totals and the status line always stay
    dropped = 0
    while len(lines) > 2 and len("\n".join(lines)) > budget:
        lines.pop(0)
        dropped += 1
    if dropped:
        lines.insert(0, f"  … {dropped} table line(s) omitted")
    body = "\n".join(lines)
    return f"{header}\n```\n{body}\n```"

def send_discord_alert(message: str, webhook_url: Optional[str] = None,
                       username: Optional[str] = "Database Copy Alert",
                       avatar_url: Optional[str] = None) -> bool:
    """
    Sends a simple Discord webhook message. Falls back to the DISCORD_WEBHOOK
    environment variable. Returns True when Discord accepted the message.
    Failures are logged and never raised.
    """
    webhook_url = webhook_url or os.environ.get("DISCORD_WEBHOOK", "")
    if not webhook_url:
        log.warning("No Discord webhook URL configured (DISCORD_WEBHOOK), skipping alert.")
        return False

    payload = {
        "content": _fit_message(message),
        "username": username,
    }
    if avatar_url:
        payload["avatar_url"] = avatar_url

    try:
        response = requests.post(webhook_url, json=payload, timeout=10)
    except requests.RequestException as e:
        log.error("Failed to send Discord alert: %s", e)
        return False

    if response.status_code not in (200, 204):
        log.error("Discord webhook returned %s: %s", response.status_code, response.text[:500])
        return False
    log.info("🔔 Alert sent to Discord.")
    return True
