import logging
import re
import httpx
from html import escape as _html_escape
from typing import Optional, Tuple, Dict, Any, List, Sequence
from common.config import settings


def escape_html(text: str) -> str:
    """Escape <, >, & for Telegram HTML parse mode."""
    return _html_escape(str(text), quote=False)

logger = logging.getLogger(__name__)

TELEGRAM_TEXT_MAX_LEN = 4096
TELEGRAM_CALLBACK_DATA_MAX_BYTES = 64


def _bot_url(method: str) -> str:
    return f"{settings.TELEGRAM_API_BASE}/bot{settings.TELEGRAM_BOT_TOKEN}/{method}"


def verify_telegram_secret(headers: Dict[str, str]) -> bool:
    if not settings.TELEGRAM_WEBHOOK_SECRET:
        return True
    return headers.get("X-Telegram-Bot-Api-Secret-Token") == settings.TELEGRAM_WEBHOOK_SECRET


def is_allowed_sender(chat_id: str, username: Optional[str]) -> bool:
    """Empty allow-lists admit everyone; otherwise either the chat or the username must be listed."""
    chat_ids = settings.telegram_allowed_chat_ids
    usernames = settings.telegram_allowed_usernames
    if not chat_ids and not usernames:
        return True
    if chat_id in chat_ids:
        return True
    return bool(username) and username.lstrip("@").lower() in usernames


def parse_update(update_json: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract basic update info from Telegram payload.
    Supports message and callback_query updates.
    """
    message = update_json.get("message")
    if message:
        chat = message.get("chat")
        text = message.get("text")
        if chat and text:
            sender = message.get("from") or {}
            return {
                "kind": "message",
                "chat_id": str(chat.get("id")),
                "text": text,
                "username": sender.get("username") or chat.get("username"),
                "message_id": message.get("message_id"),
            }

    callback = update_json.get("callback_query")
    if callback and isinstance(callback, dict):
        cb_message = callback.get("message") or {}
        cb_chat = cb_message.get("chat") or {}
        data = callback.get("data")
        if cb_chat and isinstance(data, str):
            from_user = callback.get("from") or {}
            return {
                "kind": "callback",
                "chat_id": str(cb_chat.get("id")),
                "username": from_user.get("username") or cb_chat.get("username"),
                "callback_query_id": callback.get("id"),
                "callback_data": data,
                "text": "",
            }

    return None


def build_inline_keyboard(rows: Optional[Sequence[Sequence[Any]]]) -> Optional[Dict[str, Any]]:
    """Turn engine keyboard rows (label + callback_token) into Telegram reply_markup."""
    if not rows:
        return None
    inline: List[List[Dict[str, str]]] = []
    for row in rows:
        buttons = []
        for button in row:
            token = button.callback_token
            if len(token.encode("utf-8")) > TELEGRAM_CALLBACK_DATA_MAX_BYTES:
                logger.warning("Dropping button %r: callback data too long", button.label)
                continue
            buttons.append({"text": button.label, "callback_data": token})
        if buttons:
            inline.append(buttons)
    return {"inline_keyboard": inline} if inline else None


async def answer_callback_query(callback_query_id: str, text: Optional[str] = None) -> Dict[str, Any]:
    if not settings.TELEGRAM_BOT_TOKEN:
        return {"ok": False, "error": "token_missing"}
    payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
    if text:
        payload["text"] = text[:200]
    try:
        async with httpx.AsyncClient(timeout=settings.TELEGRAM_COMMAND_TIMEOUT_SECONDS) as client:
            resp = await client.post(_bot_url("answerCallbackQuery"), json=payload)
            if resp.status_code < 400:
                return resp.json()
            logger.warning(
                "Failed to answer callback query (status=%s, body=%s)",
                resp.status_code,
                resp.text,
            )
            return {"ok": False, "error": f"status_{resp.status_code}"}
    except Exception as e:
        logger.error(f"Failed to answer callback query: {e}")
        return {"ok": False, "error": str(e)}


async def send_message(chat_id: str, text: str, reply_markup: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Sends a message back to Telegram, split into chunks when it is too long.
    """
    if not settings.TELEGRAM_BOT_TOKEN:
        logger.error("TELEGRAM_BOT_TOKEN not configured.")
        return {"ok": False, "error": "token_missing"}

    url = _bot_url("sendMessage")
    chunks = split_telegram_text(text or "", TELEGRAM_TEXT_MAX_LEN) or [""]

    try:
        async with httpx.AsyncClient(timeout=settings.TELEGRAM_COMMAND_TIMEOUT_SECONDS) as client:
            last_json: Dict[str, Any] = {"ok": True}
            for idx, chunk in enumerate(chunks):
                is_last = idx == len(chunks) - 1
                payload: Dict[str, Any] = {"chat_id": chat_id, "text": chunk, "parse_mode": "HTML"}
                # Buttons go on the final chunk only.
                if reply_markup and is_last:
                    payload["reply_markup"] = reply_markup
                resp = await client.post(url, json=payload)
                if resp.status_code < 400:
                    last_json = resp.json()
                    continue

                # Usually an HTML parse error; retry once as plain text.
                logger.warning(
                    "Telegram send failed with HTML mode (status=%s, body=%s). Retrying without parse_mode.",
                    resp.status_code,
                    resp.text,
                )
                payload.pop("parse_mode")
                payload["text"] = re.sub(r"</?(?:b|i)>", "", chunk)
                resp = await client.post(url, json=payload)
                if resp.status_code < 400:
                    last_json = resp.json()
                    continue

                logger.error(
                    "Failed to send Telegram message (status=%s, body=%s)",
                    resp.status_code,
                    resp.text,
                )
                return {"ok": False, "error": "telegram_send_failed"}
            return last_json
    except Exception as e:
        logger.error(f"Failed to send Telegram message: {e}")
        return {"ok": False, "error": str(e)}


def extract_command(text: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Parses a string for a command like /start arg1 arg2.
    Returns (command, args_string).
    """
    if not text.startswith("/"):
        return None, None

    parts = text.split(maxsplit=1)
    command = parts[0].lower().split("@")[0]  # strip @botname suffix
    args = parts[1] if len(parts) > 1 else None
    return command, args


def split_telegram_text(text: str, max_len: int = TELEGRAM_TEXT_MAX_LEN) -> List[str]:
    """Split long text into Telegram-safe chunks while preferring line boundaries."""
    if len(text) <= max_len:
        return [text]

    chunks: List[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > max_len:
            if current:
                chunks.append(current)
                current = ""
            split_at = line.rfind(" ", 0, max_len)
            if split_at <= 0:
                split_at = max_len
            chunks.append(line[:split_at])
            line = line[split_at:]
        if len(current) + len(line) > max_len:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks
