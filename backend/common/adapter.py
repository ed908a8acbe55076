import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from common.config import settings
from engine.kinds import Intent, ToolKind

logger = logging.getLogger(__name__)

CONFIRM_VERDICTS = {"confirm", "cancel", "edit", "unknown"}

_TOOL_ARGUMENT_HINTS = (
    "Arguments by tool:\n"
    "- list_*: optional status, tags, priority, category, platform, type, limit.\n"
    "- find_*: query.\n"
    "- create_task: title, optional tags, priority, status, due_date, description.\n"
    "- create_idea: title, optional category, tags, priority, status, area, project, source, description.\n"
    "- create_social_post: title, optional platform, status, content_type, post_date, post_url, description.\n"
    "- create_journal_entry: title, optional date, type, topics, context, mood (1-5), energy (1-5), description.\n"
    "- update_*: query or index or page_id to identify the record, then the fields to change; use new_title to rename. "
    "update_journal_entry accepts autofill=true.\n"
    "- mark_done, move_to_deprecated, append_description, archive_*: query or index or page_id; "
    "append_description also takes description.\n"
    "Dates are ISO YYYY-MM-DD resolved against context.today. "
    "When the user refers to an item by its number in the last shown list, pass index."
)


class LLMAdapter:
    @staticmethod
    def _deep_get(payload: Any, path: str) -> Any:
        cur = payload
        for part in path.split("."):
            if not isinstance(cur, dict):
                return None
            cur = cur.get(part)
        return cur

    def _model_for(self, operation: str) -> str:
        if operation == "plan":
            return settings.LLM_MODEL_PLAN
        if operation == "confirm":
            return settings.LLM_MODEL_CONFIRM or settings.LLM_MODEL_PLAN
        raise ValueError(f"Unsupported operation: {operation}")

    def _base_url(self) -> str:
        base = settings.LLM_API_BASE_URL.strip()
        if not base:
            raise RuntimeError("LLM_API_BASE_URL is not configured")
        return base.rstrip("/")

    async def _post_with_retry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        retries = max(0, settings.LLM_MAX_RETRIES)
        for attempt in range(retries + 1):
            try:
                async with httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_SECONDS) as client:
                    response = await client.post(
                        f"{self._base_url()}/chat/completions",
                        headers={
                            "Authorization": f"Bearer {settings.LLM_API_KEY}",
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    )
                    response.raise_for_status()
                    body = response.json()
                    if not isinstance(body, dict):
                        raise ValueError("Provider response is not a JSON object")
                    return body
            except (httpx.RequestError, httpx.HTTPStatusError, httpx.TimeoutException, ValueError) as exc:
                last_error = exc
                if attempt >= retries:
                    break
                delay = max(0.0, settings.LLM_RETRY_BACKOFF_SECONDS) * (2 ** attempt)
                if delay > 0:
                    await asyncio.sleep(delay)
        assert last_error is not None
        raise last_error

    @staticmethod
    def _extract_content(payload: Dict[str, Any]) -> Any:
        content = LLMAdapter._deep_get(((payload.get("choices") or [None])[0]) or {}, "message.content")
        if content is None:
            raise ValueError("Provider response missing message content")
        if isinstance(content, list):
            content = "\n".join(
                part["text"] for part in content if isinstance(part, dict) and isinstance(part.get("text"), str)
            ).strip()
        return content

    @staticmethod
    def _parse_content_object(content: Any) -> Dict[str, Any]:
        if isinstance(content, dict):
            return content
        if not isinstance(content, str):
            raise ValueError("Provider content is not JSON")
        parsed = json.loads(content)
        if not isinstance(parsed, dict):
            raise ValueError("Parsed provider content is not an object")
        return parsed

    def _build_payload(self, operation: str, prompt: str, user_text: str) -> Dict[str, Any]:
        return {
            "model": self._model_for(operation),
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "messages": [
                {
                    "role": "system",
                    "content": "Return only valid JSON. Do not include markdown fences.",
                },
                {"role": "system", "content": prompt},
                {"role": "user", "content": user_text},
            ],
        }

    async def _invoke_operation(self, operation: str, prompt: str, user_text: str) -> Dict[str, Any]:
        response = await self._post_with_retry(self._build_payload(operation, prompt, user_text))
        return self._parse_content_object(self._extract_content(response))

    async def plan_tool_call(self, message: str, context: Optional[Dict[str, Any]] = None) -> Optional[Intent]:
        """Map a chat message to one tool call. Returns None when nothing fits or the provider fails."""
        tools = ", ".join(kind.value for kind in ToolKind)
        prompt = (
            "Operation: plan.\n"
            "Pick exactly one tool for the user's message about their Notion tasks, ideas, social posts or journal.\n"
            f"Tools: {tools}.\n"
            f"{_TOOL_ARGUMENT_HINTS}\n"
            'Return JSON {"tool": <tool name or null>, "arguments": {...}}. '
            "Use null when the message is not a request for one of these tools."
        )
        try:
            payload: Dict[str, Any] = {"message": message}
            if isinstance(context, dict):
                payload["context"] = context
            raw = await self._invoke_operation("plan", prompt, json.dumps(payload, ensure_ascii=False))
            tool = raw.get("tool")
            if tool is None:
                return None
            arguments = raw.get("arguments")
            if not isinstance(arguments, dict):
                arguments = {}
            return Intent(tool_kind=ToolKind(tool), arguments=arguments, raw_user_text=message)
        except Exception as exc:
            logger.warning("plan_tool_call fallback: %s", type(exc).__name__)
            return None

    async def classify_confirm_intent(self, text: str, context: Optional[Dict[str, Any]] = None) -> str:
        prompt = (
            "Operation: confirm.\n"
            "The user was asked to confirm a pending action described in context. "
            "Classify their reply as confirm, cancel, edit (they want to change the action) or unknown.\n"
            'Return JSON {"intent": "confirm|cancel|edit|unknown"}.'
        )
        try:
            raw = await self._invoke_operation(
                "confirm",
                prompt,
                json.dumps({"reply": text, "context": context or {}}, ensure_ascii=False),
            )
            verdict = str(raw.get("intent") or "").strip().lower()
            return verdict if verdict in CONFIRM_VERDICTS else "unknown"
        except Exception as exc:
            logger.warning("classify_confirm_intent fallback: %s", type(exc).__name__)
            return "unknown"


adapter = LLMAdapter()
