import re
from difflib import SequenceMatcher
from typing import List

from engine.phrases import has_plural_marker

MAX_QUERY_VARIANTS = 5
MAX_SEGMENTS = 10

_TRANSLIT = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "e", "ж": "zh",
    "з": "z", "и": "i", "й": "y", "к": "k", "л": "l", "м": "m", "н": "n", "о": "o",
    "п": "p", "р": "r", "с": "s", "т": "t", "у": "u", "ф": "f", "х": "h", "ц": "ts",
    "ч": "ch", "ш": "sh", "щ": "sch", "ъ": "", "ы": "y", "ь": "", "э": "e", "ю": "yu",
    "я": "ya",
}

# Filler words that say nothing about which record is meant.
FUZZY_STOP_WORDS = frozenset({"task", "tasks", "board", "zadacha", "zadachi", "zadachu", "borda"})

_QUOTES_RE = re.compile(r"[\"'`«»“”„‘’]")
_SPACED_DIGITS_RE = re.compile(r"\b(\d)\s+(?=\d\b)")
_ALWAYS_SPLIT_RE = re.compile(r"\s*(?:;|\n|\r)+\s*")
_SOFT_SPLIT_RE = re.compile(r"\s*,\s*|\s+(?:and|then|и|потом|затем)\s+", re.IGNORECASE)
_CONNECTIVE_RE = re.compile(r",|\s(?:and|then|и|потом|затем)\s", re.IGNORECASE)
_LEADING_NOISE_RE = re.compile(
    r"^(?:(?:hi|hello|hey|привет\w*|please|пожалуйста|and|и|then|потом|затем|"
    r"find|search|найди|поиск|delete|remove|удали\w*|удалить|убери\w*|убрать|снеси|"
    r"mark\s+(?:as\s+)?done|complete|отметь(?:\s+как\s+выполненн\w*)?|закрой|"
    r"tasks|задачи)\b[\s\W]*)+",
    re.IGNORECASE,
)
_TRAILING_NOISE_RE = re.compile(r"[\s.,\"'«»!?]+$")


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def normalize_title_key(text: str) -> str:
    lowered = collapse_whitespace(str(text or "").lower())
    return collapse_whitespace(re.sub(r"[^\w\s]+|_", "", lowered))


def transliterate(text: str) -> str:
    return "".join(_TRANSLIT.get(ch, ch) for ch in (text or "").lower())


def query_variants(text: str, limit: int = MAX_QUERY_VARIANTS) -> List[str]:
    base = collapse_whitespace(text)
    if not base:
        return []
    unquoted = collapse_whitespace(_QUOTES_RE.sub("", base))
    tokens = unquoted.split(" ")
    latin = [t for t in tokens if re.fullmatch(r"[A-Za-z0-9\-]+", t)]
    candidates = [
        base,
        unquoted,
        _SPACED_DIGITS_RE.sub(r"\1", unquoted),
        re.sub(r"\s+", "", unquoted),
    ]
    if len(tokens) > 2:
        candidates.append(" ".join(tokens[:2]))
        if len(tokens[0]) >= 4:
            candidates.append(tokens[0])
    if latin and len(latin) < len(tokens):
        candidates.append(" ".join(latin))
    translit = transliterate(unquoted)
    if translit != unquoted.lower():
        candidates.append(translit)

    variants: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants[:limit]


def _clean_segment(segment: str) -> str:
    cleaned = _LEADING_NOISE_RE.sub("", segment.strip())
    cleaned = _TRAILING_NOISE_RE.sub("", cleaned).strip(" -–:")
    return cleaned


def split_multi_target(text: str) -> List[str]:
    """Split text that names several records into one query per record.

    Semicolons and line breaks always separate records. Commas and
    connective words only do when the text reads as a list.
    """
    raw = (text or "").strip()
    if not raw:
        return []
    hard_parts = [p for p in _ALWAYS_SPLIT_RE.split(raw) if p.strip()]
    soft_split = (
        len(hard_parts) > 1
        or has_plural_marker(raw)
        or len(_CONNECTIVE_RE.findall(raw)) >= 2
    )

    parts: List[str] = []
    for part in hard_parts:
        if soft_split:
            parts.extend(p for p in _SOFT_SPLIT_RE.split(part) if p and p.strip())
        else:
            parts.append(part)

    segments: List[str] = []
    for part in parts:
        cleaned = _clean_segment(part)
        if not re.search(r"\w", cleaned):
            continue
        if cleaned not in segments:
            segments.append(cleaned)
    if not segments:
        return [collapse_whitespace(raw)]
    return segments[:MAX_SEGMENTS]


def normalize_for_fuzzy(text: str) -> str:
    latin = transliterate(re.sub(r"[’']", "", text or ""))
    return collapse_whitespace(re.sub(r"[^\w]+|_", " ", latin))


def _similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()


def fuzzy_score(query: str, title: str) -> float:
    """Token-level similarity in [0, 1], tolerant to typos and Cyrillic/Latin spelling."""
    q = normalize_for_fuzzy(query)
    t = normalize_for_fuzzy(title)
    q_tokens = [x for x in q.split(" ") if len(x) >= 3 and x not in FUZZY_STOP_WORDS]
    t_tokens = [x for x in t.split(" ") if len(x) >= 3]
    if not q_tokens or not t_tokens:
        return 0.0

    total = 0.0
    best_overall = 0.0
    for qt in q_tokens:
        best = max(_similarity(qt, tt) for tt in t_tokens)
        best_overall = max(best_overall, best)
        total += best
    token_score = (total / len(q_tokens)) * 0.55 + best_overall * 0.45
    overlap = len(set(q_tokens) & set(t_tokens)) / len(set(q_tokens))
    return token_score * 0.9 + overlap * 0.1
