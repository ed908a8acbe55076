import logging
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence

from engine.errors import OptionUnmatched

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class FieldPolicy(str, Enum):
    drop = "drop"
    free_text = "free_text"
    create = "create"


class OptionMatch(NamedTuple):
    value: Optional[str]
    unknown: Optional[str]


class MultiMatch(NamedTuple):
    values: List[str]
    unknown: List[str]


def normalize_option_key(text: Any) -> str:
    return re.sub(r"[\W_]+", "", str(text or "").lower())


def match_option(value: Any, options: Sequence[str], aliases: Optional[Dict[str, str]] = None) -> OptionMatch:
    if value is None:
        return OptionMatch(None, None)
    raw = str(value).strip()
    if not raw:
        return OptionMatch(None, None)
    legal = [o for o in options if isinstance(o, str) and o]
    if not legal:
        return OptionMatch(None, raw)

    lowered = raw.lower()
    for option in legal:
        if option.lower() == lowered:
            return OptionMatch(option, None)

    wanted = normalize_option_key(raw)
    if not wanted:
        return OptionMatch(None, raw)
    keyed = [(normalize_option_key(option), option) for option in legal]
    for key, option in keyed:
        if key == wanted:
            return OptionMatch(option, None)

    token = (aliases or {}).get(wanted, wanted)
    hits = [(key, option) for key, option in keyed if key and (key == token or key.startswith(token) or token in key)]
    if not hits:
        return OptionMatch(None, raw)
    hits.sort(key=lambda item: len(item[0]))
    return OptionMatch(hits[0][1], None)


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if v is not None]
    return [value]


def match_many(values: Any, options: Sequence[str], aliases: Optional[Dict[str, str]] = None) -> MultiMatch:
    matched: List[str] = []
    unknown: List[str] = []
    for item in as_list(values):
        result = match_option(item, options, aliases)
        if result.unknown:
            unknown.append(result.unknown)
        if result.value and result.value not in matched:
            matched.append(result.value)
    return MultiMatch(matched, unknown)


def merge_values(current: Iterable[str], additions: Iterable[str]) -> List[str]:
    merged: List[str] = []
    seen = set()
    for value in list(current or []) + list(additions or []):
        key = normalize_option_key(value)
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(value)
    return merged


async def resolve_field(
    arguments: Dict[str, Any],
    key: str,
    options: Sequence[str],
    *,
    aliases: Optional[Dict[str, str]] = None,
    multi: bool = False,
    policy: FieldPolicy = FieldPolicy.drop,
    create_options: Optional[Callable[[List[str]], Awaitable[List[str]]]] = None,
) -> Any:
    """Normalize one field of a create/update request.

    Returns UNSET when the field must be left untouched, None when the
    field must be cleared, otherwise the canonical value (a list for
    multi-valued fields).
    """
    if key not in arguments:
        return UNSET
    value = arguments[key]
    if value is None:
        return None
    if multi:
        result = match_many(value, options, aliases)
        matched, unknown = list(result.values), list(result.unknown)
        if not as_list(value):
            return []
    else:
        single = match_option(value, options, aliases)
        if single.value is None and single.unknown is None:
            return None
        matched = [single.value] if single.value else []
        unknown = [single.unknown] if single.unknown else []

    if unknown:
        if policy == FieldPolicy.free_text:
            matched.extend(u for u in unknown if u not in matched)
        elif policy == FieldPolicy.create and create_options is not None:
            created = await create_options(unknown)
            matched.extend(c for c in created if c not in matched)
        else:
            for item in unknown:
                logger.info("Dropping unmatched option: %s", OptionUnmatched(key, item))

    if multi:
        return matched if matched else UNSET
    return matched[0] if matched else UNSET
