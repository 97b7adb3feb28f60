"""Default rules for common automated senders."""

from typing import List, Tuple

from ..common.schemas import RuleTrigger, TriggerKind

# (name, trigger kind, trigger value, batch type)
SEED_RULES: List[Tuple[str, TriggerKind, str, str]] = [
    # Notifications
    ("GitHub -> notifications", TriggerKind.SENDER_DOMAIN, "github.com", "notifications"),
    ("Figma -> notifications", TriggerKind.SENDER_DOMAIN, "figma.com", "notifications"),
    ("Slack -> notifications", TriggerKind.SENDER_DOMAIN, "slack.com", "notifications"),
    ("Airtable -> notifications", TriggerKind.SENDER_DOMAIN, "airtable.com", "notifications"),
    ("Linear -> notifications", TriggerKind.SENDER_DOMAIN, "linear.app", "notifications"),
    ("Vercel -> notifications", TriggerKind.SENDER_DOMAIN, "vercel.com", "notifications"),
    ("Granola -> notifications", TriggerKind.SENDER_DOMAIN, "granola.ai", "notifications"),
    ("Railway -> notifications", TriggerKind.SENDER_DOMAIN, "railway.app", "notifications"),
    ("Neon -> notifications", TriggerKind.SENDER_DOMAIN, "neon.tech", "notifications"),
    ("Sentry -> notifications", TriggerKind.SENDER_DOMAIN, "sentry.io", "notifications"),
    ("Google Alerts -> notifications", TriggerKind.SENDER_EXACT, "googlealerts-noreply@google.com", "notifications"),
    ("Google Search Console -> notifications", TriggerKind.SENDER_EXACT, "sc-noreply@google.com", "notifications"),
    # Finance
    ("Venmo -> finance", TriggerKind.SENDER_DOMAIN, "venmo.com", "finance"),
    ("PayPal -> finance", TriggerKind.SENDER_DOMAIN, "paypal.com", "finance"),
    ("Stripe -> finance", TriggerKind.SENDER_DOMAIN, "stripe.com", "finance"),
    ("QuickBooks -> finance", TriggerKind.SENDER_DOMAIN, "intuit.com", "finance"),
    # Calendar
    ("Calendar invites -> calendar", TriggerKind.SUBJECT_CONTAINS, "invitation:", "calendar"),
    ("Calendar updates -> calendar", TriggerKind.SUBJECT_CONTAINS, "Updated invitation:", "calendar"),
    ("Calendar cancellations -> calendar", TriggerKind.SUBJECT_CONTAINS, "Canceled event:", "calendar"),
    ("Calendar RSVPs -> calendar", TriggerKind.SUBJECT_CONTAINS, "accepted this invitation", "calendar"),
    # Newsletters
    ("Substack -> newsletters", TriggerKind.SENDER_DOMAIN, "substack.com", "newsletters"),
    ("Beehiiv -> newsletters", TriggerKind.SENDER_DOMAIN, "beehiiv.com", "newsletters"),
]


def seed_triggers() -> List[Tuple[str, RuleTrigger, str]]:
    return [(name, RuleTrigger(kind=kind, value=value), batch_type) for name, kind, value, batch_type in SEED_RULES]
