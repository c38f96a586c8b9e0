"""
Target resolution - fuzzy name/id -> one concrete action
========================================================
Kept apart from the mutations so the matching rules can be tested on plain
objects. Order of precedence:

1. exact id (row id or plan action key)
2. normalized title equality (case, accents, surrounding spaces ignored)
3. containment either way; more than one hit is ambiguous
"""
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple


def normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"\s+", " ", stripped).strip().lower()


@dataclass
class Resolution:
    action: Any = None
    candidates: List[Any] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.action is not None

    @property
    def ambiguous(self) -> bool:
        return self.action is None and len(self.candidates) > 1


def resolve_target(actions: Sequence[Any], query: str) -> Resolution:
    """Pick the action a free-text reference points to"""
    raw = (query or "").strip()
    if not raw:
        return Resolution()

    for action in actions:
        if raw == str(action.id) or raw == getattr(action, "plan_action_key", None):
            return Resolution(action=action)

    wanted = normalize(raw)
    exact = [a for a in actions if normalize(a.title) == wanted]
    if len(exact) == 1:
        return Resolution(action=exact[0])
    if len(exact) > 1:
        return Resolution(candidates=exact)

    partial = [
        a for a in actions
        if normalize(a.title) and (wanted in normalize(a.title) or normalize(a.title) in wanted)
    ]
    if len(partial) == 1:
        return Resolution(action=partial[0])
    return Resolution(candidates=partial)


# -----------------------------------------------------------------------------
# Plan content helpers
# -----------------------------------------------------------------------------

_DERIVED_KEY = re.compile(r"^p(\d+)-a(\d+)$")


def pin_action_ids(content: Dict[str, Any]) -> Dict[str, Any]:
    """
    Give every content action without an id its positional key as explicit
    id, so inserting into a phase does not shift the identity of the others.
    """
    for phase_index, phase in enumerate(content.get("phases") or []):
        for position, spec in enumerate(phase.get("actions") or []):
            if not spec.get("id"):
                spec["id"] = f"p{phase_index}-a{position}"
    return content


def locate_in_content(content: Dict[str, Any], action_key: str) -> Optional[Tuple[int, int]]:
    """(phase_index, position) of the content action carrying this key"""
    phases = (content or {}).get("phases") or []
    for phase_index, phase in enumerate(phases):
        for position, spec in enumerate(phase.get("actions") or []):
            if str(spec.get("id")) == action_key:
                return phase_index, position

    match = _DERIVED_KEY.match(action_key or "")
    if match:
        phase_index, position = int(match.group(1)), int(match.group(2))
        if phase_index < len(phases):
            specs = phases[phase_index].get("actions") or []
            if position < len(specs) and not specs[position].get("id"):
                return phase_index, position
    return None
