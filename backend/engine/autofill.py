"""Journal entry classification inferred from free text.

Used when a journal update asks to fill the entry's classification from
its own content. All inference is keyword based and deterministic.
"""
import re
from typing import Any, Dict, List, Optional

DEFAULT_RATING = 3
MAX_TOPICS = 3
MAX_CONTEXT = 2

_TYPE_RULES = (
    ("Daily summary", r"(итог|summary of (?:the )?day|day (?:summary|recap)|(?:good|bad|hard|great) day|"
                      r"(?:хорош|плох|прекрасн|тяжел)\w*\s+д[её]н|как\s+прош[её]л\s+д[её]н)"),
    ("Reflection", r"(рефлекс|reflect)"),
    ("Event", r"(событ|\bevent\b|happened)"),
    ("Idea", r"(идея|\bidea\b)"),
)
DEFAULT_TYPE = "Thought"

_TOPIC_RULES = (
    ("Holidays", r"(нов\w*\s+год|рождеств|праздник|holiday|christmas|new year)"),
    ("Daily summary", r"(д[её]н[ья]|сегодня|вчера|итог|\btoday\b|yesterday|\bday\b)"),
    ("Work", r"(работ|проект|заказ|\bwork|project|client)"),
    ("Family", r"(семь|дет[иь]|родител|family|\bkids?\b|parents)"),
    ("Meetings", r"(встреч|созвон|meeting|\bcall\b)"),
    ("Health", r"(здоров|\bсон\b|трен|health|sleep|workout|gym)"),
    ("Relationships", r"(отношен|relationship)"),
    ("Content", r"(контент|\bпост|соцсет|content|\bpost)"),
    ("Finance", r"(деньг|финанс|money|financ|budget)"),
    ("Travel", r"(дорог|поездк|путеше|travel|\btrip\b)"),
)
DEFAULT_TOPIC = "Daily summary"

_CONTEXT_RULES = (
    ("home", r"(\bдом|\bhome\b)"),
    ("office", r"(офис|office)"),
    ("commute", r"(дорог|\bпуть|commute|on the road)"),
    ("meetings", r"(встреч|созвон|meeting)"),
    ("alone", r"(\bодин\b|\bодна\b|alone)"),
    ("family", r"(семь|family)"),
)
DEFAULT_CONTEXT = "unspecified"

# Later rules override earlier ones, so stronger signals come last.
_MOOD_RULES = (
    (4, r"(супер|класс|отличн|\bрад\b|счастлив|доволен|хорош|круто|кайф|\bgood\b|great|happy|glad|awesome)"),
    (5, r"(очень\s+рад|восторг|счастье|безумно\s+рад|ecstatic|thrilled|amazing day)"),
    (2, r"(плох|грустн|тоск|печал|злюсь|раздраж|тревож|страшн|депресс|\bbad\b|\bsad\b|anxious|angry|upset)"),
    (1, r"(ужасн|крайне\s+плохо|паник|terrible|awful|panic)"),
)
_ENERGY_RULES = (
    (4, r"(энерг|бодр|заряжен|полон\s+сил|energ|\bfresh\b|productive)"),
    (5, r"(очень\s+энерг|максимум\s+энерг|на\s+подъеме|full of energy|unstoppable)"),
    (2, r"(устал|выгор|нет\s+сил|сонн|низк\w*\s+энерг|разбит|tired|sleepy|drained|low energy)"),
    (1, r"(совсем\s+нет\s+сил|еле\s+жив|очень\s+устал|exhausted|burn(?:ed|t)\s+out)"),
)


def _matches(pattern: str, text: str) -> bool:
    return re.search(pattern, text, re.IGNORECASE) is not None


def infer_type(text: str) -> str:
    lowered = (text or "").lower()
    for value, pattern in _TYPE_RULES:
        if _matches(pattern, lowered):
            return value
    return DEFAULT_TYPE


def infer_topics(text: str) -> List[str]:
    lowered = (text or "").lower()
    topics = [value for value, pattern in _TOPIC_RULES if _matches(pattern, lowered)]
    return (topics or [DEFAULT_TOPIC])[:MAX_TOPICS]


def infer_context(text: str) -> List[str]:
    lowered = (text or "").lower()
    context = [value for value, pattern in _CONTEXT_RULES if _matches(pattern, lowered)]
    return (context or [DEFAULT_CONTEXT])[:MAX_CONTEXT]


def clamp_rating(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:
        return None
    return max(1, min(5, int(round(number))))


def _rate(text: str, rules) -> int:
    lowered = (text or "").lower()
    rating = DEFAULT_RATING
    for value, pattern in rules:
        if _matches(pattern, lowered):
            rating = value
    return rating


def infer_mood(text: str) -> int:
    return _rate(text, _MOOD_RULES)


def infer_energy(text: str) -> int:
    return _rate(text, _ENERGY_RULES)


def infer_journal_fields(text: str) -> Dict[str, Any]:
    return {
        "type": infer_type(text),
        "topics": infer_topics(text),
        "context": infer_context(text),
        "mood": infer_mood(text),
        "energy": infer_energy(text),
    }


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def build_autofill_patch(entry: Dict[str, Any], inferred: Dict[str, Any], overwrite: bool) -> Dict[str, Any]:
    """Fields to write: every inferred field when overwriting, otherwise only the empty ones."""
    patch: Dict[str, Any] = {}
    for key, value in inferred.items():
        if overwrite or _is_empty(entry.get(key)):
            patch[key] = value
    return patch
