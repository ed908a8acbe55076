from typing import Any, Dict, List, Optional

from common.telegram import escape_html
from engine.kinds import ACTION_DOMAIN, ActionKind, Candidate, Domain, Keyboard, KeyboardButton

STALE_CONFIRMATION_TEXT = "Confirmation expired. Repeat the command."
STALE_PICK_TEXT = "That option is no longer available. Pick again from the list."
CANCELLED_TEXT = "Cancelled."
NOTHING_TO_CHANGE_TEXT = "Nothing to change. Tell me which fields to update."
MISSING_DESCRIPTION_TEXT = "What should I add to the description?"

DOMAIN_LABELS = {
    Domain.task: ("task", "tasks"),
    Domain.idea: ("idea", "ideas"),
    Domain.social: ("post", "posts"),
    Domain.journal: ("journal entry", "journal entries"),
}

_FIELD_LABELS = {
    "status": "status",
    "priority": "priority",
    "due_date": "due",
    "tags": "tags",
    "category": "category",
    "area": "area",
    "project": "project",
    "source": "source",
    "platform": "platform",
    "post_date": "post date",
    "content_type": "content type",
    "post_url": "url",
    "date": "date",
    "type": "type",
    "topics": "topics",
    "context": "context",
    "mood": "mood",
    "energy": "energy",
}


def _quote(title: Any) -> str:
    text = str(title or "").strip() or "untitled"
    return f"\"{escape_html(text)}\""


def _render_value(value: Any) -> str:
    if value is None:
        return "(clear)"
    if isinstance(value, list):
        return escape_html(", ".join(str(v) for v in value)) if value else "(clear)"
    return escape_html(str(value))


def _field_lines(fields: Dict[str, Any], skip=("title",)) -> List[str]:
    lines = []
    for key, value in fields.items():
        if key in skip or key not in _FIELD_LABELS:
            continue
        lines.append(f"• {_FIELD_LABELS[key]}: {_render_value(value)}")
    return lines


def confirmation_prompt(kind: ActionKind, payload: Dict[str, Any]) -> str:
    title = payload.get("title")
    if kind == ActionKind.mark_done:
        return f"Mark done: {_quote(title)}?"
    if kind == ActionKind.move_to_deprecated:
        return f"Delete (move to Deprecated): {_quote(title)}?"
    if kind == ActionKind.append_description:
        return f"Add to the description of {_quote(title)}:\n{escape_html(payload.get('description') or '')}"
    if kind in (ActionKind.archive_idea, ActionKind.archive_social_post, ActionKind.archive_journal_entry):
        label = DOMAIN_LABELS[ACTION_DOMAIN[kind]][0]
        return f"Archive {label} {_quote(title)}?"

    if kind in (ActionKind.create_task, ActionKind.create_idea, ActionKind.create_social_post, ActionKind.create_journal_entry):
        fields = payload.get("fields") or {}
        label = DOMAIN_LABELS[ACTION_DOMAIN[kind]][0]
        lines = [f"Create {label} {_quote(fields.get('title'))}?"]
        lines.extend(_field_lines(fields))
        if payload.get("description"):
            lines.append(f"• description: {escape_html(payload['description'])}")
        return "\n".join(lines)

    label = DOMAIN_LABELS[ACTION_DOMAIN[kind]][0]
    patch = payload.get("patch") or {}
    if kind == ActionKind.update_journal_entry and payload.get("autofill"):
        mode = "overwrite all fields" if payload.get("overwrite") else "fill empty fields"
        lines = [f"Update {label} {_quote(title)} ({mode} from its content)?"]
    else:
        lines = [f"Update {label} {_quote(title)}?"]
    if patch.get("title"):
        lines.append(f"• title: {escape_html(patch['title'])}")
    lines.extend(_field_lines(patch))
    merge = payload.get("merge") or {}
    if merge.get("tags"):
        lines.append("• tags are added to the existing ones")
    if payload.get("description"):
        lines.append(f"• description: {escape_html(payload['description'])}")
    return "\n".join(lines)


def missing_title_text(domain: Domain) -> str:
    return f"What should the new {DOMAIN_LABELS[domain][0]} be called?"


def duplicate_prompt(title: str) -> str:
    return f"Looks like this already exists: {_quote(title)}. Create a duplicate?"


def pick_prompt(domain: Domain, candidates: List[Candidate]) -> str:
    lines = [f"Found several {DOMAIN_LABELS[domain][1]}. Pick one:"]
    for candidate in candidates:
        lines.append(f"{candidate.index}. {escape_html(candidate.title or candidate.id)}")
    return "\n".join(lines)


def platform_prompt(platforms: List[str], unknown: Optional[str] = None) -> str:
    if unknown:
        return f"I don't know the platform \"{escape_html(unknown)}\". Pick one:"
    return "Which platform?"


def not_found_text(domain: Domain, query: Optional[str]) -> str:
    plural = DOMAIN_LABELS[domain][1]
    if query:
        return f"No {plural} found for \"{escape_html(query)}\". Try a different wording."
    return f"Which {DOMAIN_LABELS[domain][0]}? Give me a title or a number from the list."


def queue_exhausted_text(domain: Domain, query: Optional[str]) -> str:
    return f"Could not find the next {DOMAIN_LABELS[domain][0]} (\"{escape_html(query or '')}\"). Stopping here."


def executed_text(kind: ActionKind, title: Optional[str]) -> str:
    quoted = _quote(title)
    if kind == ActionKind.mark_done:
        return f"Done: {quoted}."
    if kind == ActionKind.move_to_deprecated:
        return f"Moved to Deprecated: {quoted}."
    if kind == ActionKind.append_description:
        return f"Description updated: {quoted}."
    if kind.value.startswith("create_"):
        return f"Created: {quoted}."
    if kind.value.startswith("archive_"):
        return f"Archived: {quoted}."
    return f"Updated: {quoted}."


def format_record_list(domain: Domain, records: List[Dict[str, Any]], heading: Optional[str] = None) -> str:
    if not records:
        return f"No {DOMAIN_LABELS[domain][1]} found."
    lines = [f"<b>{escape_html(heading or DOMAIN_LABELS[domain][1].capitalize())}</b>"]
    for idx, record in enumerate(records, start=1):
        line = f"{idx}. {escape_html(record.get('title') or 'untitled')}"
        extra = [str(record[k]) for k in ("status", "due_date", "post_date", "date") if record.get(k)]
        if extra:
            line += f" <i>({escape_html(', '.join(extra))})</i>"
        lines.append(line)
    return "\n".join(lines)


def confirm_keyboard(action_id: str) -> Keyboard:
    return [
        [
            KeyboardButton(label="Yes", callback_token=f"confirm:{action_id}"),
            KeyboardButton(label="No", callback_token=f"cancel:{action_id}"),
        ]
    ]


def pick_keyboard(candidates: List[Candidate]) -> Keyboard:
    rows: Keyboard = []
    row: List[KeyboardButton] = []
    for candidate in candidates:
        row.append(KeyboardButton(label=str(candidate.index), callback_token=f"pick:{candidate.index}"))
        if len(row) == 5:
            rows.append(row)
            row = []
    if row:
        rows.append(row)
    rows.append([KeyboardButton(label="Cancel", callback_token="pick:cancel")])
    return rows


def platform_keyboard(action_id: str, platforms: List[str]) -> Keyboard:
    rows: Keyboard = [
        [KeyboardButton(label=name[:30], callback_token=f"plat:{action_id}:{idx}")]
        for idx, name in enumerate(platforms)
    ]
    rows.append([KeyboardButton(label="Cancel", callback_token=f"cancel:{action_id}")])
    return rows
