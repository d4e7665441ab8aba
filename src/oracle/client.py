"""HTTP oracle backed by a local model server."""

from typing import Any, Optional

import httpx
import structlog

from core.config import OracleConfig
from core.errors import OracleUnavailableError
from core.models import Pattern
from oracle.base import (
    DecisionOracle,
    IntentSummaries,
    JudgmentRequest,
    NextStep,
    NextStepRequest,
    PatternJudgment,
    parse_json_response,
    parse_summaries,
)
from oracle.prompts import judgment_prompt, next_step_prompt, summary_prompt

logger = structlog.get_logger()


class HttpOracle(DecisionOracle):
    """
    Oracle speaking to an Ollama-style ``/api/generate`` endpoint, or to an
    OpenAI-compatible ``/v1/chat/completions`` endpoint when
    ``provider == "openai"``.

    Transport errors become OracleUnavailableError; callers decide whether
    to retry.
    """

    def __init__(
        self,
        config: OracleConfig,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    async def judge_pattern(self, request: JudgmentRequest) -> PatternJudgment:
        text = await self._generate(judgment_prompt(request), json_mode=True, call="judge_pattern")
        return parse_json_response(text, PatternJudgment)

    async def summarize_pattern(self, pattern: Pattern) -> IntentSummaries:
        text = await self._generate(summary_prompt(pattern), json_mode=False, call="summarize_pattern")
        return parse_summaries(text)

    async def decide_next_step(self, request: NextStepRequest) -> NextStep:
        text = await self._generate(
            next_step_prompt(request),
            json_mode=True,
            call="decide_next_step",
            image=request.screenshot,
        )
        return parse_json_response(text, NextStep)

    async def close(self) -> None:
        await self._client.aclose()

    async def _generate(
        self,
        prompt: str,
        json_mode: bool,
        call: str,
        image: Optional[str] = None,
    ) -> str:
        """
        Send one prompt and return the raw completion text.

        ``image`` is a ``data:`` URL attached as a vision input.
        """
        if self.config.provider == "openai":
            path = "/v1/chat/completions"
            body: dict[str, Any] = {
                "model": self.config.model,
                "messages": [{"role": "user", "content": _chat_content(prompt, image)}],
                "temperature": 0.3,
            }
            if json_mode:
                body["response_format"] = {"type": "json_object"}
        else:
            path = "/api/generate"
            body = {
                "model": self.config.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": 0.3},
            }
            if image:
                body["images"] = [_base64_part(image)]
            if json_mode:
                body["format"] = "json"

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self._client.post(path, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("oracle_http_error", call=call, status=e.response.status_code)
            raise OracleUnavailableError(
                f"Oracle returned HTTP {e.response.status_code}", call=call
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("oracle_transport_error", call=call, error=str(e))
            raise OracleUnavailableError(f"Oracle request failed: {e}", call=call)

        if self.config.provider == "openai":
            choices = data.get("choices") or [{}]
            return (choices[0].get("message") or {}).get("content", "")
        return data.get("response", "")


def _chat_content(prompt: str, image: Optional[str]) -> Any:
    if not image:
        return prompt
    return [
        {"type": "text", "text": prompt},
        {"type": "image_url", "image_url": {"url": image}},
    ]


def _base64_part(image: str) -> str:
    """Strip the ``data:...;base64,`` prefix Ollama does not accept."""
    return image.split(",", 1)[1] if image.startswith("data:") else image
