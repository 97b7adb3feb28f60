"""
Inbox Triage

Aggregates events from email, chat, issue tracker and meeting notes into one
triage queue.

Philosophy:
- Classification is a ladder: rules first, a cheap local model next, an
  expensive hosted model last
- One-off corrections become durable rules (reclassify teaches)
- Every lifecycle action returns an authoritative result
- A failing item, oracle or step never aborts the rest of the run

Usage:
    from triage.common import load_config
    from triage.inbox import TriageInbox
    from triage.heartbeat import HeartbeatOrchestrator
"""

__version__ = "0.1.0"
