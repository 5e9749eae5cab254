"""
Turns activity log sentences into tagged spans for display.

`parse_log_message` scans the words of an entry's `action` left to right with one
piece of state, whether the patient name is still pending:

- name pending and the next words equal the entry's `patientName` (case-insensitive):
  emit one `patient-ref` span and skip past the name; the name is now consumed;
- otherwise, a word equal to the entry's `targetType` ("appointment", "patient" or
  "invoice") with a `targetId` present: emit an `entity-ref` span;
- otherwise: emit a `text` span.

Linkability is decided separately by `is_destructive`: references in sentences about
edits, updates, deletions or removals are kept as emphasized spans that do not link,
since their targets may no longer exist.
"""
# clinicdesk/linkify.py

from dataclasses import dataclass
from typing import List, Optional

from clinicdesk.models import LogEntry

TEXT = "text"
PATIENT_REF = "patient-ref"
ENTITY_REF = "entity-ref"

ENTITY_WORDS = ("appointment", "patient", "invoice")
DESTRUCTIVE_MARKERS = ("edit", "update", "delete", "remove")


@dataclass(frozen=True)
class Span:
    """One piece of a parsed log sentence.

    Attributes:
        kind: `text`, `patient-ref` or `entity-ref`.
        value: The text to display.
        linkable: Whether the span should be rendered as a navigable reference.
        target_type: Entity type a reference points at.
        target_id: ID of the referenced record.
    """
    kind: str
    value: str
    linkable: bool = False
    target_type: Optional[str] = None
    target_id: Optional[int] = None


def is_destructive(action: str) -> bool:
    lowered = (action or "").lower()
    return any(marker in lowered for marker in DESTRUCTIVE_MARKERS)


def parse_log_message(entry) -> List[Span]:
    """Parses a stored log entry (dict or `LogEntry`) into an ordered list of spans."""
    if isinstance(entry, LogEntry):
        entry = entry.to_record()
    action = entry.get("action") or ""
    target_type = entry.get("targetType")
    target_id = entry.get("targetId")
    patient_id = entry.get("patientId")
    patient_name = entry.get("patientName") or ""

    destructive = is_destructive(action)
    words = action.split()
    name_parts = patient_name.lower().split()
    name_pending = bool(name_parts)

    spans = []
    i = 0
    while i < len(words):
        if name_pending and [w.lower() for w in words[i:i + len(name_parts)]] == name_parts:
            spans.append(Span(
                PATIENT_REF,
                patient_name,
                linkable=not destructive and patient_id is not None,
                target_type="patient",
                target_id=patient_id,
            ))
            name_pending = False
            i += len(name_parts)
            continue

        word = words[i]
        lowered = word.lower()
        if lowered in ENTITY_WORDS and lowered == target_type and target_id is not None:
            spans.append(Span(ENTITY_REF, word, linkable=not destructive, target_type=lowered, target_id=target_id))
        else:
            spans.append(Span(TEXT, word))
        i += 1
    return spans


def render_plain(spans: List[Span]) -> str:
    """Rejoins spans into a sentence separated by single spaces."""
    return " ".join(span.value for span in spans)
