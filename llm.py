"""
Chat-model access for every AI feature.

Structured calls go through LangChain's ChatOpenAI against the
OpenAI-compatible gateway with one forced function tool. Free-text analysis is
streamed: the gateway's server-sent-event body is relayed byte for byte.
"""

import time
from typing import AsyncIterator, Dict, List

import httpx
import openai
from langchain_core.messages import AIMessage
from langchain_openai import ChatOpenAI

from errors import (AdvisoryServiceError, QuotaExceededError, RateLimitedError,
                    UpstreamError, require)
from settings import Settings
from tool_payload import normalize_completion


def map_status_error(status_code: int) -> AdvisoryServiceError:
    if status_code == 429:
        return RateLimitedError()
    if status_code == 402:
        return QuotaExceededError()
    return UpstreamError()


def function_tool(name: str, description: str, parameters: dict) -> dict:
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


class UpstreamStream:
    """An open streaming response from the gateway, relayed without buffering."""

    media_type = "text/event-stream"

    def __init__(self, response: httpx.Response, max_seconds: float):
        self.response = response
        self.max_seconds = max_seconds

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        deadline = time.monotonic() + self.max_seconds
        try:
            async for chunk in self.response.aiter_bytes():
                yield chunk
                if time.monotonic() > deadline:
                    print(f"⚠️ Stream cut after {self.max_seconds:.0f}s deadline")
                    break
        except httpx.HTTPError as e:
            # idle read timeout or dropped upstream connection
            print(f"⚠️ Upstream stream ended early: {type(e).__name__}: {e}")
        finally:
            await self.response.aclose()

    async def aclose(self):
        await self.response.aclose()


class GatewayChatOpenAI(ChatOpenAI):
    """ChatOpenAI that tolerates the gateway's loosely shaped completion bodies."""

    def _create_chat_result(self, response, generation_info=None):
        body = response if isinstance(response, dict) else response.model_dump()
        return super()._create_chat_result(normalize_completion(body), generation_info)


class AdvisoryModel:
    """The single seam between the service and the hosted LLM."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http
        self._chat_models: Dict[str, ChatOpenAI] = {}

    def _chat(self, model_name: str) -> ChatOpenAI:
        api_key = require(self.settings.llm_api_key, "LOVABLE_API_KEY")
        if model_name not in self._chat_models:
            self._chat_models[model_name] = GatewayChatOpenAI(
                model=model_name,
                api_key=api_key,
                base_url=self.settings.llm_api_base,
                temperature=0.15,
                timeout=self.settings.llm_timeout_seconds,
                max_retries=0,
                http_async_client=self.http,
            )
        return self._chat_models[model_name]

    def _model_name(self, vision: bool) -> str:
        return self.settings.llm_vision_model if vision else self.settings.llm_model

    async def call_tool(self, messages: List[dict], tool: dict, vision: bool = False) -> AIMessage:
        """Run one chat completion that must answer by calling ``tool``."""
        name = tool["function"]["name"]
        bound = self._chat(self._model_name(vision)).bind_tools([tool], tool_choice=name)
        try:
            return await bound.ainvoke(messages)
        except openai.APIStatusError as e:
            print(f"❌ AI gateway error: {e.status_code} {str(e)[:300]}")
            raise map_status_error(e.status_code) from e
        except openai.APIError as e:
            print(f"❌ AI gateway unreachable: {e}")
            raise UpstreamError() from e
        except (IndexError, TypeError, ValueError) as e:
            # a 200 reply LangChain could not turn into a message
            print(f"⚠️ Unreadable AI response for {name}: {type(e).__name__}: {str(e)[:300]}")
            return AIMessage(content="")

    async def open_stream(self, messages: List[dict], vision: bool = False) -> UpstreamStream:
        """Start a streamed completion; status errors are raised before any byte is relayed."""
        api_key = require(self.settings.llm_api_key, "LOVABLE_API_KEY")
        request = self.http.build_request(
            "POST",
            f"{self.settings.llm_api_base.rstrip('/')}/chat/completions",
            json={"model": self._model_name(vision), "messages": messages, "stream": True},
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(
                self.settings.llm_timeout_seconds,
                read=self.settings.stream_idle_timeout_seconds,
            ),
        )
        try:
            response = await self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            print(f"❌ AI gateway unreachable: {e}")
            raise UpstreamError() from e

        if response.status_code != 200:
            body = await response.aread()
            await response.aclose()
            print(f"❌ AI gateway error: {response.status_code} {body[:300]!r}")
            raise map_status_error(response.status_code)

        return UpstreamStream(response, self.settings.stream_max_seconds)
