"""
Open detection - decides whether a pixel fetch is a human reading the email

Mail clients, image proxies and link scanners fetch tracking pixels on their
own, often seconds after delivery. A fetch only counts as a real open when it
comes late enough after sending, from an agent that is not a known robot, and
not as part of a burst of repeated fetches.
"""

import logging
from datetime import timedelta

logger = logging.getLogger(__name__)

MINIMUM_HUMAN_DELAY = timedelta(seconds=15)
RECENT_WINDOW = timedelta(minutes=5)
RAPID_FIRE_GAP = timedelta(seconds=10)
MAX_RECENT_ACCESSES = 2

# Known proxies, unfurlers and scanners (not legitimate mail clients)
AUTOMATED_USER_AGENTS = (
    "googleimageproxy",
    "facebookexternalhit",
    "twitterbot",
    "linkedinbot",
    "slackbot",
    "emailtracker",
    "bot",
    "crawler",
    "spider",
    "prefetch",
    "scanner",
    "security",
)


def is_automated_agent(user_agent):
    lowered = (user_agent or "").lower()
    return any(signature in lowered for signature in AUTOMATED_USER_AGENTS)


def is_real_user_open(email, user_agent, now, fetch_history):
    """
    Classify one pixel fetch.

    Args:
        email: mapping with at least "id" and "sent_at" (aware datetime or None)
        user_agent: raw User-Agent header of the fetch
        now: aware datetime of the fetch
        fetch_history: callable(email_id) -> list of receipts with "read_at"

    Returns:
        True when the fetch should count as a genuine open.
    """
    sent_at = email.get("sent_at")
    if not sent_at:
        return False

    if now - sent_at < MINIMUM_HUMAN_DELAY:
        return False

    if is_automated_agent(user_agent):
        return False

    try:
        receipts = fetch_history(email["id"])
    except Exception as e:
        # Pattern check unavailable: let the open through
        logger.warning(f"Could not check access pattern for email {email['id']}: {e}")
        return True

    window_start = now - RECENT_WINDOW
    recent = sorted(
        r["read_at"] for r in receipts
        if r.get("read_at") and r["read_at"] > window_start
    )

    if len(recent) > MAX_RECENT_ACCESSES:
        return False

    if len(recent) >= 2 and recent[1] - recent[0] < RAPID_FIRE_GAP:
        return False

    return True
