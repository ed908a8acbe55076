"""Keyword classifiers and alias tables used by the engine.

Everything here is a pure function of its input text. Locale-specific
vocabulary lives in the module-level tables so a deployment can swap them
without touching resolution or confirmation logic.
"""
import re
from enum import Enum
from typing import Dict, Optional

from engine.kinds import ActionKind


class ReplyClass(str, Enum):
    confirm = "confirm"
    cancel = "cancel"
    edit = "edit"
    unknown = "unknown"


AFFIRMATIVE_REPLIES = frozenset(
    {
        "yes", "y", "yep", "yeah", "sure", "ok", "okay", "confirm", "do it", "go", "go ahead", "apply",
        "да", "ага", "угу", "ок", "окей", "подтверждаю", "подтвердить", "согласен", "верно",
        "правильно", "точно", "хорошо", "давай",
    }
)
NEGATIVE_REPLIES = frozenset(
    {
        "no", "n", "nope", "cancel", "stop", "discard", "skip", "never mind", "dont", "don't",
        "нет", "не", "отмена", "отменить", "не надо", "стоп",
    }
)

# Cyrillic word boundaries: Python's \b is Unicode-aware, so it is safe here.
_REPLACE_RE = re.compile(
    r"\b(replace|overwrite|only these|only those|clear|замени\w*|перезапиш\w*|очисти\w*|только эти|только этот)\b",
    re.IGNORECASE,
)
_OVERWRITE_ALL_RE = re.compile(
    r"(overwrite all|overwrite everything|refill|recalculate|all fields|"
    r"перезаполн\w*|пересчита\w*|все поля|обнови все)",
    re.IGNORECASE,
)
_TAG_MARKER_RE = re.compile(r"\b(tags?|тег\w*)\b", re.IGNORECASE)
_PROJECT_MARKER_RE = re.compile(r"\b(projects?|проект\w*)\b", re.IGNORECASE)
_PLURAL_RE = re.compile(
    r"\b(them|these|those|both|all of|tasks|items|их|эти|обе|оба|задачи|все)\b",
    re.IGNORECASE,
)
_DELETE_RE = re.compile(r"\b(delete|remove|удали\w*|удалить|убери\w*|убрать|снеси)\b", re.IGNORECASE)
_DONE_RE = re.compile(
    r"(\bmark\s+(?:as\s+)?done\b|\bcomplete\b|\bdone\b|отметь\s+как\s+выполненн\w*|сделай\s+выполненн\w*|выполнено)",
    re.IGNORECASE,
)

ORDINAL_WORDS: Dict[str, int] = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
    "перв": 1, "втор": 2, "трет": 3, "четв": 4, "пят": 5,
    "шест": 6, "седьм": 7, "восьм": 8, "девят": 9, "десят": 10,
}
_ORDINAL_WORD_RE = re.compile(
    r"\b(first|second|third|fourth|fifth|sixth|seventh|eighth|ninth|tenth|"
    r"(?:перв|втор|трет|четв[её]рт|пят|шест|седьм|восьм|девят|десят)(?:ый|ий|ой|ая|ья|ую|ью|ое|ье|ем))\b",
    re.IGNORECASE,
)
_INDEX_RE = re.compile(r"(?:#|№|\bnumber\s+|\bno\.\s*|\bномер\s+)(\d{1,2})\b", re.IGNORECASE)
_ORDINAL_SUFFIX_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th|-?(?:й|я|ю|ая|ой))\b", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"^\s*(\d{1,2})\s*[.)]?\s*$")

PRIORITY_ALIASES: Dict[str, str] = {
    "medium": "med",
    "mid": "med",
    "normal": "med",
    "средний": "med",
    "urgent": "high",
    "важно": "high",
    "высокий": "high",
    "низкий": "low",
}

TASK_STATUS_ALIASES: Dict[str, str] = {
    "completed": "done",
    "finished": "done",
    "готово": "done",
    "выполнено": "done",
    "inprogress": "inprogress",
    "wip": "inprogress",
    "вработе": "inprogress",
    "todo": "idle",
    "new": "idle",
}

SOCIAL_PLATFORM_ALIASES: Dict[str, str] = {
    "facebook": "fb",
    "fb": "fb",
    "фб": "fb",
    "фейсбук": "fb",
    "telegram": "tg",
    "tg": "tg",
    "тг": "tg",
    "телеграм": "tg",
    "телега": "tg",
    "tiktok": "tiktok",
    "тикток": "tiktok",
    "instagram": "instagram",
    "insta": "instagram",
    "инстаграм": "instagram",
    "инста": "instagram",
    "youtube": "youtube",
    "yt": "youtube",
    "ютуб": "youtube",
    "linkedin": "linkedin",
    "линкедин": "linkedin",
    "twitter": "twitter",
    "твиттер": "twitter",
    "x": "x",
}

SOCIAL_STATUS_ALIASES: Dict[str, str] = {
    "idea": "idea",
    "postidea": "idea",
    "draft": "draft",
    "черновик": "draft",
    "planned": "planned",
    "запланировано": "planned",
    "запланирован": "planned",
    "published": "published",
    "опубликовано": "published",
    "опубликован": "published",
    "done": "published",
}


def _clean(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower()).strip(" .!?")


def classify_reply(text: str) -> Optional[ReplyClass]:
    """Rule-based yes/no detection. Returns None when inconclusive."""
    cleaned = _clean(text)
    if not cleaned:
        return None
    if cleaned in AFFIRMATIVE_REPLIES:
        return ReplyClass.confirm
    if cleaned in NEGATIVE_REPLIES:
        return ReplyClass.cancel
    if cleaned == "edit" or cleaned.startswith("edit "):
        return ReplyClass.edit
    return None


def wants_replace(text: str) -> bool:
    return bool(_REPLACE_RE.search(text or ""))


def wants_overwrite_all(text: str) -> bool:
    return bool(_OVERWRITE_ALL_RE.search(text or ""))


def mentions_tags(text: str) -> bool:
    return bool(_TAG_MARKER_RE.search(text or ""))


def mentions_project(text: str) -> bool:
    return bool(_PROJECT_MARKER_RE.search(text or ""))


def has_plural_marker(text: str) -> bool:
    return bool(_PLURAL_RE.search(text or ""))


def infer_index(text: str) -> Optional[int]:
    """Finds an explicit list position such as "#2", "number 2", "2nd" or "second"."""
    raw = text or ""
    for pattern in (_INDEX_RE, _ORDINAL_SUFFIX_RE, _BARE_NUMBER_RE):
        match = pattern.search(raw)
        if match:
            value = int(match.group(1))
            return value if value >= 1 else None
    match = _ORDINAL_WORD_RE.search(raw)
    if match:
        word = match.group(1).lower()
        for stem, value in ORDINAL_WORDS.items():
            if word.startswith(stem):
                return value
    return None


def parse_bare_number(text: str) -> Optional[int]:
    match = _BARE_NUMBER_RE.match(text or "")
    return int(match.group(1)) if match else None


def infer_requested_action(text: str) -> Optional[ActionKind]:
    if _DELETE_RE.search(text or ""):
        return ActionKind.move_to_deprecated
    if _DONE_RE.search(text or ""):
        return ActionKind.mark_done
    return None
