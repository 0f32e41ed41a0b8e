"""
Service for extracting action items and summaries from transcripts using AI.
"""
import json
import re
from datetime import date
from typing import Any, List, Optional

import httpx
from aiolimiter import AsyncLimiter

from meeting_followup.exceptions import MalformedOutputError
from meeting_followup.logging_config import get_logger
from meeting_followup.services.base import BaseHTTPService
from meeting_followup.utils import safe_dict_get

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_action_item_payload(content: str) -> List[Any]:
    """
    Pull the raw action item list out of a model response.

    Accepts a bare JSON array or an object with an ``action_items`` array,
    optionally wrapped in a markdown code fence. Items are returned as-is;
    validating them is the caller's job.
    """
    text = _FENCE_RE.sub("", content.strip())
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"Model output is not JSON: {e.msg}", integration="extraction")

    if isinstance(payload, dict):
        payload = payload.get("action_items", payload.get("actionItems"))
    if not isinstance(payload, list):
        raise MalformedOutputError("Model output has no action item list", integration="extraction")
    return payload


class OpenAIExtractionService(BaseHTTPService):
    """Chat-completions client for structured extraction and summaries."""

    integration = "extraction"

    SYSTEM_PROMPT = (
        "You extract follow-up work from meeting transcripts. "
        "You answer only with the JSON requested."
    )

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        limiter: Optional[AsyncLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout, limiter=limiter, transport=transport)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    def _create_extraction_prompt(
        self,
        transcript: str,
        meeting_title: Optional[str],
        meeting_date: Optional[date] = None,
    ) -> str:
        if meeting_date is not None:
            reference = (
                f"Meeting date: {meeting_date.isoformat()} ({meeting_date.strftime('%A')}); "
                "resolve relative deadlines such as \"by Friday\" against it.\n"
            )
        else:
            reference = ""
        return f"""Analyze the following meeting transcript and extract all action items.
For each action item, identify:
1. The task description
2. The person assigned to the task (if mentioned)
3. The due date (if mentioned), as YYYY-MM-DD
4. The priority level (if mentioned): low, medium or high

Answer with a JSON object of the form
{{"action_items": [{{"description": "...", "assignee": "name or null", "dueDate": "YYYY-MM-DD or null", "priority": "low|medium|high or null"}}]}}
Use an empty list when there are no action items.

Meeting: {meeting_title or "Meeting"}
{reference}
Transcript:
{transcript}"""

    def _create_summary_prompt(self, transcript: str, meeting_title: Optional[str]) -> str:
        return f"""Provide a concise summary (maximum 250 words) of the following meeting transcript,
highlighting the key points discussed and decisions made.

Meeting: {meeting_title or "Meeting"}

Transcript:
{transcript}"""

    async def _complete(self, prompt: str, operation: str, json_output: bool) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
        }
        if json_output:
            payload["response_format"] = {"type": "json_object"}

        response = await self._request(
            "POST",
            f"{self.base_url}/chat/completions",
            operation,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=payload,
        )
        data = self._json(response, operation)

        content = safe_dict_get(data, "choices", 0, "message", "content")
        if not isinstance(content, str):
            raise MalformedOutputError(f"Response from {operation} has no message content", integration=self.integration)
        return content

    async def extract_action_items(
        self,
        transcript_text: str,
        meeting_title: Optional[str] = None,
        meeting_date: Optional[date] = None,
    ) -> List[Any]:
        """
        Return the raw, unvalidated action items the model found.

        ``meeting_date`` anchors relative deadlines ("by Friday") in the prompt.
        """
        content = await self._complete(
            self._create_extraction_prompt(transcript_text, meeting_title, meeting_date),
            "extract_action_items",
            json_output=True,
        )
        items = parse_action_item_payload(content)
        logger.info("action_items_extracted", count=len(items), meeting_title=meeting_title)
        return items

    async def summarize(self, transcript_text: str, meeting_title: Optional[str] = None) -> str:
        content = await self._complete(
            self._create_summary_prompt(transcript_text, meeting_title),
            "summarize",
            json_output=False,
        )
        summary = content.strip()
        if not summary:
            raise MalformedOutputError("Model returned an empty summary", integration=self.integration)
        logger.info("summary_generated", meeting_title=meeting_title, length=len(summary))
        return summary
