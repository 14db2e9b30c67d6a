# src/goalcoach/llm/client.py

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import OpenAI

from ..core.errors import SuggestionServiceError

logger = logging.getLogger(__name__)

NONE_MARKER = "none"

COACH_PROMPT_TEMPLATE = """
You are a professional goal-achievement coach.
Your client is struggling to reach their goal. Use the information below to rebuild their plan.

# Client information
- Final goal: {goal}
- Completed tasks: {completed}
- Incomplete tasks: {incomplete}

# Your job
1. Analyze the information and infer where the client is most likely getting stuck.
2. Propose exactly {count} new tasks that are more concrete and actionable than the current ones.
3. Keep every task short and phrased as a specific action.
4. Answer with a JSON object that has a single key "tasks" holding an array of strings.
   Example: {{"tasks": [{example}]}}
5. Do not include any text outside the JSON object.
""".strip()


def build_coach_prompt(goal_text: str, tasks: Sequence[Mapping[str, Any]], count: int) -> str:
    """Prompt for the suggestion model; tasks are the sanitized projection."""
    completed = [str(t.get("text", "")) for t in tasks if t.get("completed")]
    incomplete = [str(t.get("text", "")) for t in tasks if not t.get("completed")]
    example = ", ".join(f'"New task {i}"' for i in range(1, count + 1))
    return COACH_PROMPT_TEMPLATE.format(
        goal=goal_text,
        completed=", ".join(completed) or NONE_MARKER,
        incomplete=", ".join(incomplete) or NONE_MARKER,
        count=count,
        example=example,
    )


def _extract_json_object(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("{") and raw.endswith("}"):
        return raw
    first = raw.find("{")
    last = raw.rfind("}")
    if first != -1 and last != -1 and last > first:
        return raw[first : last + 1]
    return raw


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {"Timeout", "ConnectTimeout", "ReadTimeout", "WriteTimeout"}


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "AI coach error."
    if "API key is not set" in msg:
        return "The AI coach is not configured (missing API key). Set GOALCOACH_LLM_API_KEY or OPENAI_API_KEY in .env."
    if "model list is empty" in msg:
        return "The AI coach is not configured (no models). Set GOALCOACH_LLM_MODELS in .env."
    return msg


class OpenAISuggestionClient:
    """
    SuggestionService backed by an OpenAI-compatible chat completions API.

    - JSON-object response format, parsed into {"tasks": [...]}
    - models are tried in order; 404 / rate limit / network errors fall through
      to the next model, auth errors fail fast
    - the SDK call is synchronous and runs in a worker thread
    """

    def __init__(self, settings: Any) -> None:
        self._settings = settings
        self._client: OpenAI | None = None
        self._bad_models: dict[str, float] = {}  # model -> retry_at (monotonic)

        api_key = getattr(settings, "llm_api_key", None)
        if not api_key or not str(api_key).strip():
            raise SuggestionServiceError("LLM API key is not set.")

    def _get_client(self) -> OpenAI:
        """Lazily create and cache the client. Automatic retries are off so fallback is quick."""
        if self._client is not None:
            return self._client

        s = self._settings
        base_url = str(getattr(s, "llm_base_url", "") or "").strip()
        connect_s = float(getattr(s, "llm_connect_timeout", 5.0))
        read_s = max(float(getattr(s, "llm_read_timeout", 60.0)), connect_s)

        self._client = OpenAI(
            base_url=base_url or None,
            api_key=str(s.llm_api_key),
            timeout=httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s),
            max_retries=0,
        )
        return self._client

    async def suggest(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        goal = str(payload.get("goalText") or "").strip()
        tasks = payload.get("tasks")
        if not goal or not isinstance(tasks, list):
            raise SuggestionServiceError("Goal text and task list are required.")
        return await asyncio.to_thread(self._suggest_sync, goal, tasks)

    def _complete(self, client: OpenAI, model: str, prompt: str) -> str:
        s = self._settings
        headers: Dict[str, str] = dict(getattr(s, "extra_headers", {}) or {})
        response = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=float(getattr(s, "llm_temperature", 0.7)),
            max_tokens=int(getattr(s, "llm_max_tokens", 1000)),
            extra_headers=headers or None,
        )
        if not response.choices:
            return ""
        message = response.choices[0].message
        return (getattr(message, "content", None) or "").strip()

    def _suggest_sync(self, goal: str, tasks: List[Mapping[str, Any]]) -> Mapping[str, Any]:
        models: List[str] = [m.strip() for m in (getattr(self._settings, "llm_models", None) or []) if m.strip()]
        if not models:
            raise SuggestionServiceError("LLM model list is empty.")

        count = int(getattr(self._settings, "suggestion_count", 5))
        prompt = build_coach_prompt(goal, tasks, count)
        client = self._get_client()

        last_error: Optional[Exception] = None
        now = time.monotonic()

        for model in models:
            retry_at = self._bad_models.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("LLM: requesting suggestions model=%s count=%d", model, count)
            t0 = time.monotonic()
            try:
                content = self._complete(client, model, prompt)
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise SuggestionServiceError(
                        "AI coach authentication failed. Check your API key."
                    ) from e

                if _is_not_found_error(e):
                    self._bad_models[model] = time.monotonic() + 3600.0
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            if not content:
                last_error = SuggestionServiceError("The AI coach returned an empty response.")
                logger.info("LLM: empty content from model=%s, trying next", model)
                continue

            try:
                parsed = json.loads(_extract_json_object(content))
            except json.JSONDecodeError as e:
                last_error = SuggestionServiceError("The AI coach response was not valid JSON.")
                logger.info("LLM: unparseable JSON from model=%s: %s", model, e)
                continue

            logger.info("LLM: suggestions from model=%s (%.2fs)", model, time.monotonic() - t0)
            if not isinstance(parsed, dict):
                raise SuggestionServiceError("The AI coach returned an unexpected response.")
            return parsed

        if isinstance(last_error, SuggestionServiceError):
            raise last_error
        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise SuggestionServiceError("The AI coach is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise SuggestionServiceError("AI coach network/timeout error. Try again later.") from last_error
            detail = str(last_error).strip()
            message = f"All AI coach models failed: {detail}" if detail else "All AI coach models failed."
            raise SuggestionServiceError(message) from last_error
        raise SuggestionServiceError("All AI coach models failed.")
