"""Request pipeline: adapter result -> HTTP request -> sentinel text chunks.

:meth:`RequestPipeline.stream` is the single entry point for every
provider.  It builds the provider payload, runs the optional tool
round-trip and yields decoded text (with ``__THINKING__`` /
``__END_THINKING__`` / ``__TOKEN_USAGE__`` sentinels) for the
:class:`~llm_relay.stream.tags.StreamTagParser`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable

import httpx

from llm_relay.adapters.registry import build_adapter_result
from llm_relay.config import ProviderConfig, RelayConfig, require_api_key
from llm_relay.constants import ANTHROPIC_DEFAULT_MAX_TOKENS
from llm_relay.errors import ConfigurationError, SSEBufferOverflowError, StreamError
from llm_relay.llm.decoders import (
    AnthropicStreamDecoder,
    GoogleStreamDecoder,
    OpenAIStreamDecoder,
    decode_anthropic_response,
    decode_google_response,
    decode_openai_response,
    format_usage,
    parse_event_json,
)
from llm_relay.llm.tools import (
    SYSTEM_TIME_TOOL_NAME,
    build_anthropic_tool_payload,
    build_gemini_tool_payload,
    build_openai_tool_payload,
    build_system_time_result,
    execute_tool_call,
    extract_anthropic_tool_use,
    extract_gemini_function_call,
    last_user_message_text,
    parse_tool_arguments,
    resolve_tool_names,
    should_use_tools,
    system_time_tool_allowed,
)
from llm_relay.llm.transport import HttpTransport
from llm_relay.stream.sse import SSEParser, iter_sse_events
from llm_relay.types import AdapterResult, ChatParams, Dialect, TokenUsage

_logger = logging.getLogger(__name__)

# Tool-resolution answers are replayed in small pieces when streaming
_REPLAY_CHUNK_SIZE = 12


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


async def _text_chunks(text: str, size: int = _REPLAY_CHUNK_SIZE) -> AsyncIterator[str]:
    for i in range(0, len(text), size):
        yield text[i:i + size]
        await asyncio.sleep(0)


class RequestPipeline:
    """Runs one chat turn against any registered provider.

    Holds no per-request state, so one instance can serve concurrent
    streams; each call to :meth:`stream` allocates its own SSE parser
    and decoder.
    """

    def __init__(self, transport: HttpTransport, config: RelayConfig | None = None) -> None:
        self.transport = transport
        self.config = config or RelayConfig()

    async def stream(
        self,
        params: ChatParams,
        provider_config: ProviderConfig | None = None,
    ) -> AsyncIterator[str]:
        """Yield sentinel text chunks for one turn.

        Configuration problems raise :class:`ConfigurationError` before any
        request is sent.  Every other failure is raised as
        :class:`StreamError` carrying ``params.error_message`` when given.
        """
        pc = provider_config or self.config.active_provider
        result = build_adapter_result(params, pc)

        if result.dialect == Dialect.GOOGLE:
            source = self._stream_google(result, params, pc)
        elif result.dialect == Dialect.ANTHROPIC:
            source = self._stream_anthropic(result, params, pc)
        else:
            source = self._stream_openai(result, params, pc)

        try:
            async for chunk in source:
                yield chunk
        except ConfigurationError:
            raise
        except Exception as exc:
            _logger.error("%s request failed: %s", result.endpoint, exc)
            raise StreamError(params.error_message or str(exc)) from exc
        finally:
            await source.aclose()

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _proxy_kwargs(self, pc: ProviderConfig) -> dict[str, Any]:
        if not pc.api_key:
            return {}
        return {
            "credential": pc.api_key,
            "auth_headers": {"Authorization": f"Bearer {pc.api_key}"},
        }

    async def _iter_frames(self, response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
        overflow: list[BaseException] = []

        def on_error(error: BaseException) -> None:
            if isinstance(error, SSEBufferOverflowError):
                overflow.append(error)
            _logger.error("SSE stream error: %s", error)

        async def chunks() -> AsyncIterator[bytes]:
            async for chunk in self.transport.iter_bytes(response):
                if overflow:
                    break
                yield chunk

        limits = self.config.limits
        parser = SSEParser(
            max_buffer_size=limits.sse_max_buffer_size,
            max_retries=limits.sse_max_retries,
            on_error=on_error,
        )
        try:
            async for event in iter_sse_events(chunks(), parser):
                frame = parse_event_json(event)
                if frame is not None:
                    yield frame
                if overflow:
                    break
        finally:
            parser.dispose()
            await response.aclose()
        if overflow:
            raise overflow[0]

    async def _decode_stream(
        self,
        response: httpx.Response,
        decoder: OpenAIStreamDecoder | AnthropicStreamDecoder | GoogleStreamDecoder,
    ) -> AsyncIterator[str]:
        async for frame in self._iter_frames(response):
            for chunk in decoder.feed(frame):
                yield chunk
        for chunk in decoder.finish():
            yield chunk

    async def _send(
        self,
        endpoint: str,
        payload: dict[str, Any],
        stream: bool,
        decode_body: Callable[[dict[str, Any]], list[str]],
        make_decoder: Callable[[], Any],
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """POST once and yield decoded chunks, streamed or not."""
        response = await self.transport.open(endpoint, payload, stream=stream, **kwargs)
        if not stream:
            for chunk in decode_body(response.json()):
                yield chunk
            return
        async for chunk in self._decode_stream(response, make_decoder()):
            yield chunk

    # ------------------------------------------------------------------
    # OpenAI-style providers
    # ------------------------------------------------------------------

    def build_openai_payload(self, result: AdapterResult, pc: ProviderConfig) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": result.model,
            "messages": list(result.messages),
            "stream": pc.stream,
        }
        if pc.stream:
            payload["stream_options"] = {"include_usage": True}
        payload.update(result.extra_body)
        payload["temperature"] = pc.temperature
        if pc.show_advanced_params:
            payload["top_p"] = pc.top_p
            payload["top_k"] = pc.top_k
        return _drop_none(payload)

    def _openai_send(self, endpoint: str, payload: dict[str, Any], pc: ProviderConfig) -> AsyncIterator[str]:
        return self._send(
            endpoint, payload, bool(payload.get("stream")),
            decode_openai_response, OpenAIStreamDecoder,
            **self._proxy_kwargs(pc),
        )

    async def _stream_openai(
        self,
        result: AdapterResult,
        params: ChatParams,
        pc: ProviderConfig,
    ) -> AsyncIterator[str]:
        payload = self.build_openai_payload(result, pc)
        attachments = params.local_attachments
        tool_names = resolve_tool_names(
            pc.tool_config,
            local_attachments=attachments,
            last_user_text=last_user_message_text(payload["messages"]),
        )
        tool_payload = build_openai_tool_payload(pc.tool_config, tool_names=tool_names)

        if not should_use_tools(tool_payload):
            async for chunk in self._openai_send(result.endpoint, payload, pc):
                yield chunk
            return

        # Tool resolution: one blocking call, then at most one follow-up
        resolution = {k: v for k, v in payload.items() if k != "stream_options"}
        resolution.update(stream=False, **tool_payload)
        first = await self.transport.post_json(result.endpoint, resolution, **self._proxy_kwargs(pc))

        choices = first.get("choices") or []
        assistant = (choices[0].get("message") if choices else None) or {}
        tool_calls = assistant.get("tool_calls") or []
        initial_usage = first.get("usage")

        if not tool_calls:
            content = assistant.get("content") or ""
            if content:
                if isinstance(initial_usage, dict):
                    yield format_usage(TokenUsage.from_dict(initial_usage))
                if payload.get("stream"):
                    async for piece in _text_chunks(content):
                        yield piece
                else:
                    yield content
                return
            async for chunk in self._openai_send(result.endpoint, payload, pc):
                yield chunk
            return

        tool_results = []
        for call in tool_calls:
            function = call.get("function") or {}
            name = function.get("name")
            try:
                args = parse_tool_arguments(function.get("arguments"))
                content = execute_tool_call(name, args, attachments)
            except ValueError as e:
                content = f"Invalid tool arguments: {e}"
            _logger.info("Executed tool %s", name)
            tool_results.append({
                "role": "tool",
                "tool_call_id": call.get("id"),
                "content": content,
            })

        if isinstance(initial_usage, dict):
            yield format_usage(TokenUsage.from_dict(initial_usage))

        followup = {**payload, "messages": [*payload["messages"], assistant, *tool_results]}
        async for chunk in self._openai_send(result.endpoint, followup, pc):
            yield chunk

    # ------------------------------------------------------------------
    # Anthropic
    # ------------------------------------------------------------------

    def build_anthropic_payload(self, result: AdapterResult, pc: ProviderConfig) -> dict[str, Any]:
        extra = dict(result.extra_body)
        extra.pop("anthropic_beta", None)
        payload: dict[str, Any] = {
            "model": result.model,
            "stream": pc.stream,
            "messages": list(result.messages),
            "max_tokens": ANTHROPIC_DEFAULT_MAX_TOKENS,
            "system": result.system,
            **extra,
        }
        return _drop_none(payload)

    async def _stream_anthropic(
        self,
        result: AdapterResult,
        params: ChatParams,
        pc: ProviderConfig,
    ) -> AsyncIterator[str]:
        require_api_key(pc.api_key, "Anthropic API key")
        payload = self.build_anthropic_payload(result, pc)
        beta = result.extra_body.get("anthropic_beta")
        kwargs: dict[str, Any] = {
            "headers": {"anthropic-beta": beta} if beta else None,
            **self._proxy_kwargs(pc),
        }

        if system_time_tool_allowed(pc.tool_config, params.message):
            payload.update(build_anthropic_tool_payload(pc.tool_config))
            data = await self.transport.post_json(
                result.endpoint, {**payload, "stream": False}, **kwargs,
            )
            tool_use = extract_anthropic_tool_use(data)
            if tool_use is not None:
                tool_input = tool_use.get("input")
                fmt = tool_input.get("format") if isinstance(tool_input, dict) else None
                _logger.info("Executed tool %s", SYSTEM_TIME_TOOL_NAME)
                payload["messages"] = [
                    *payload["messages"],
                    {"role": "assistant", "content": data["content"]},
                    {
                        "role": "user",
                        "content": [{
                            "type": "tool_result",
                            "tool_use_id": tool_use["id"],
                            "content": build_system_time_result(fmt),
                        }],
                    },
                ]

        async for chunk in self._send(
            result.endpoint, payload, pc.stream,
            decode_anthropic_response, AnthropicStreamDecoder,
            **kwargs,
        ):
            yield chunk

    # ------------------------------------------------------------------
    # Google Gemini
    # ------------------------------------------------------------------

    def build_google_payload(
        self,
        result: AdapterResult,
        contents: list[dict[str, Any]] | None = None,
        tool_payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": list(contents if contents is not None else result.messages),
            **result.extra_body,
        }
        if result.system:
            payload["systemInstruction"] = {"parts": [{"text": result.system}]}
        payload.update(tool_payload or {})
        return payload

    def _google_send(
        self,
        result: AdapterResult,
        payload: dict[str, Any],
        pc: ProviderConfig,
        stream: bool,
    ) -> AsyncIterator[str]:
        action = "streamGenerateContent" if stream else "generateContent"
        return self._send(
            f"models/{result.model}:{action}",
            payload,
            stream,
            decode_google_response,
            GoogleStreamDecoder,
            **self._google_kwargs(pc, stream),
        )

    def _google_kwargs(self, pc: ProviderConfig, stream: bool) -> dict[str, Any]:
        key = pc.api_key
        return {
            "base_url": self.config.gemini_url,
            "credential": key,
            "auth_headers": {"x-goog-api-key": key},
            "params": {"alt": "sse"} if stream else None,
        }

    async def _stream_google(
        self,
        result: AdapterResult,
        params: ChatParams,
        pc: ProviderConfig,
    ) -> AsyncIterator[str]:
        require_api_key(pc.api_key, "Gemini API key")
        contents = list(result.messages)
        allow_tool = system_time_tool_allowed(pc.tool_config, params.message)
        tool_payload = build_gemini_tool_payload(pc.tool_config) if allow_tool else {}

        if allow_tool:
            resolution = self.build_google_payload(result, contents, tool_payload)
            data = await self.transport.post_json(
                f"models/{result.model}:generateContent",
                resolution,
                **self._google_kwargs(pc, stream=False),
            )
            call = extract_gemini_function_call(data)
            if call and call.get("name") == SYSTEM_TIME_TOOL_NAME:
                args = call.get("args") or {}
                contents = [
                    *contents,
                    {"role": "model", "parts": [{"functionCall": call}]},
                    {
                        "role": "user",
                        "parts": [{
                            "functionResponse": {
                                "name": call["name"],
                                "response": {"content": build_system_time_result(args.get("format"))},
                            }
                        }],
                    },
                ]

        payload = self.build_google_payload(result, contents, tool_payload)
        async for chunk in self._google_send(result, payload, pc, pc.stream):
            yield chunk
