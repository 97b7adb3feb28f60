"""
Classification Oracle Interface

An oracle takes an item's text plus a little context and answers with a
batch type, priority and confidence. Two implementations exist: a local
Ollama model (cheap tier) and a hosted LLM (expensive tier).

Contract:
- return an OracleResult when the model answered usefully
- return None when it answered with nothing usable
- raise ClassificationUnavailable when it could not answer at all
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.schemas import Item, Priority

CONTENT_CHARS = 500

# Batch types the oracles may choose from; anything else is treated as null
BATCH_TYPES = {
    "notifications": "Tool alerts, CI/CD updates, and system notifications",
    "finance": "Invoices, payments, billing alerts, and purchase orders",
    "newsletters": "Industry digests, marketing emails, and subscriptions",
    "calendar": "Meeting invites, acceptances, and scheduling updates",
    "spam": "Cold outreach, junk mail, and unsolicited sales pitches",
}

CLASSIFY_POLICY = """You are a triage classifier for a personal inbox. Decide whether an item can be handled in bulk with similar items, or needs individual attention.

Batch types:
{batch_types}
- null: needs individual attention (a person wrote to the user, asks something, or is time sensitive)

Priority:
- urgent: must be handled today
- high: a direct request or message to the user
- normal: everything else worth reading
- low: can be ignored safely

Respond with JSON only:
{{"batchType": "<batch type>"|null, "priority": "urgent|high|normal|low", "confidence": 0.0-1.0, "summary": "one sentence", "tags": ["..."], "reason": "brief explanation"}}"""


@dataclass
class OracleResult:
    """Answer from a classification oracle"""
    batch_type: Optional[str]
    confidence: float
    priority: Optional[Priority] = None
    summary: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    reason: str = ""
    raw_response: Optional[str] = None


class ClassificationOracle(ABC):
    """Narrow interface the pipeline consumes."""

    name: str = "oracle"

    @abstractmethod
    async def classify(self, text: str, context: Dict[str, Any]) -> Optional[OracleResult]:
        """
        Classify one item.

        Raises:
            ClassificationUnavailable: the oracle could not be reached in time
        """
        pass


def policy_prompt(batch_types: Optional[Dict[str, str]] = None) -> str:
    choices = batch_types or BATCH_TYPES
    lines = "\n".join(f'- "{name}": {description}' for name, description in choices.items())
    return CLASSIFY_POLICY.format(batch_types=lines)


def build_item_text(item: Item) -> str:
    return f"Subject: {item.subject}\n\n{(item.content or '')[:CONTENT_CHARS]}"


def build_context(item: Item, guidance: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "item_id": item.id,
        "connector": item.connector.value,
        "sender": item.sender,
        "sender_name": item.sender_name,
        "subject": item.subject,
        "is_direct": item.is_direct,
        "guidance": list(guidance or []),
    }


def render_prompt(text: str, context: Dict[str, Any]) -> str:
    """User message for one item."""
    sender = context.get("sender", "")
    sender_name = context.get("sender_name") or sender
    lines = [
        "ITEM:",
        f"- Source: {context.get('connector', 'unknown')}",
        f"- From: {sender_name} <{sender}>",
        f"- Sent directly to the user: {'yes' if context.get('is_direct') else 'no'}",
        "",
        text,
    ]
    guidance = context.get("guidance") or []
    if guidance:
        lines.extend(["", "GUIDANCE NOTES:"])
        lines.extend(f"- {note}" for note in guidance)
    return "\n".join(lines)


def parse_llm_json(raw: str) -> dict:
    """Parse JSON from a model response, handling code fences and preamble text.

    Tries in order:
    1. Strip markdown code fences, then json.loads
    2. Extract substring between first '{' and last '}', then json.loads
    3. Return empty dict
    """
    if not raw:
        return {}

    text = raw.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines)

    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else {}
    except json.JSONDecodeError:
        pass

    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start >= 0 and end > start:
        try:
            data = json.loads(raw[start:end])
            return data if isinstance(data, dict) else {}
        except json.JSONDecodeError:
            pass

    return {}


def _coerce_priority(value: Any) -> Optional[Priority]:
    try:
        return Priority(str(value).lower()) if value else None
    except ValueError:
        return None


def result_from_payload(
    data: Dict[str, Any],
    raw: Optional[str] = None,
    batch_types: Optional[Dict[str, str]] = None,
) -> Optional[OracleResult]:
    """Build an OracleResult from parsed model JSON; None when unusable."""
    if not data or "confidence" not in data:
        return None

    try:
        confidence = float(data.get("confidence"))
    except (TypeError, ValueError):
        return None
    confidence = max(0.0, min(1.0, confidence))

    batch_type = data.get("batchType", data.get("batch_type"))
    if isinstance(batch_type, str):
        batch_type = batch_type.strip().lower() or None
    else:
        batch_type = None
    if batch_type is not None and batch_type not in (batch_types or BATCH_TYPES):
        batch_type = None

    tags = data.get("tags") or []
    if not isinstance(tags, list):
        tags = []

    summary = data.get("summary")
    return OracleResult(
        batch_type=batch_type,
        confidence=confidence,
        priority=_coerce_priority(data.get("priority")),
        summary=str(summary) if summary else None,
        tags=[str(tag) for tag in tags if tag],
        reason=str(data.get("reason") or "No reason provided"),
        raw_response=raw,
    )
