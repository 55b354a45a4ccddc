"""Command-line harness: send one message and render the decoded channels."""

from __future__ import annotations

import asyncio
import dataclasses
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from llm_relay.config import ProviderConfig, RelayConfig, load_config
from llm_relay.errors import RelayError
from llm_relay.events.bus import EventBus
from llm_relay.llm.client_cache import ClientCache
from llm_relay.llm.pipeline import RequestPipeline
from llm_relay.llm.transport import HttpTransport
from llm_relay.session import ChatStream
from llm_relay.types import (
    ChatParams,
    ConversationMessage,
    RelayEvent,
    RelayEventType,
    Role,
    StreamResult,
)

console = Console()


class StreamingDisplay:
    """Prints thinking and answer text as it arrives."""

    def __init__(self, con: Console, show_thinking: bool = True):
        self.console = con
        self.show_thinking = show_thinking
        self._last_channel: RelayEventType | None = None

    def handle(self, event: RelayEvent) -> None:
        if event.type == RelayEventType.STREAM_THINKING and self.show_thinking:
            self._switch(event.type, "[dim]Thinking:[/dim]")
            self.console.print(event.data["text"], style="dim", end="", markup=False)
        elif event.type == RelayEventType.STREAM_RESPONSE:
            self._switch(event.type, "")
            self.console.print(event.data["text"], end="", markup=False)

    def _switch(self, channel: RelayEventType, header: str) -> None:
        if self._last_channel == channel:
            return
        if self._last_channel is not None:
            self.console.print()
        if header:
            self.console.print(header)
        self._last_channel = channel


def _render_result(result: StreamResult) -> None:
    console.print()
    if result.thinking_summary:
        console.print(Panel(result.thinking_summary, title="Thinking summary", border_style="blue"))
    usage = result.token_usage
    if usage:
        table = Table(title="Token usage", show_header=False)
        table.add_row("prompt", str(usage.prompt_tokens))
        table.add_row("completion", str(usage.completion_tokens))
        table.add_row("total", str(usage.total_tokens))
        if usage.cached_tokens is not None:
            table.add_row("cached", str(usage.cached_tokens))
        console.print(table)


def _provider_config(config: RelayConfig, provider: str | None) -> ProviderConfig:
    if provider is None:
        return config.active_provider
    return config.providers.get(provider, ProviderConfig(provider=provider))


async def _run_chat(config: RelayConfig, pc: ProviderConfig, params: ChatParams) -> StreamResult | None:
    cache = ClientCache(timeout=config.timeout)
    transport = HttpTransport(
        cache,
        proxy_url=config.proxy_url,
        timeout=config.timeout,
        max_retries=config.max_retries,
        base_delay=config.retry_base_delay,
    )
    bus = EventBus()
    display = StreamingDisplay(console, show_thinking=params.use_thinking)
    bus.subscribe("*", display.handle)
    stream = ChatStream(RequestPipeline(transport, config), params, pc, bus=bus)
    try:
        return await stream.run()
    finally:
        await cache.aclose()


@click.group()
def main() -> None:
    """llm-relay - multi-provider LLM streaming relay."""


@main.command()
@click.argument("message")
@click.option("--config", "-c", "config_path", default=None,
              help="Path to llm_relay.yaml (auto-detected from CWD or ~/.config/llm-relay/)")
@click.option("--provider", "-p", default=None, help="Provider id (overrides config)")
@click.option("--thinking", is_flag=True, help="Request reasoning output")
@click.option("--summary", is_flag=True, help="Ask for a <thinking_summary> recap")
@click.option("--no-stream", is_flag=True, help="Use a single non-streamed response")
@click.option("--language", "-l", default=None, help="Reply language, e.g. English")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def chat(message: str, config_path: str | None, provider: str | None, thinking: bool,
         summary: bool, no_stream: bool, language: str | None, verbose: bool):
    """Send MESSAGE through the full pipeline and print the answer."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    config = load_config(config_path)
    pc = _provider_config(config, provider)
    overrides: dict[str, object] = {}
    if summary:
        overrides["show_thinking_summary"] = True
    if no_stream:
        overrides["stream"] = False
    if overrides:
        pc = dataclasses.replace(pc, **overrides)

    params = ChatParams(
        history=(ConversationMessage(role=Role.USER, content=message),),
        message=message,
        use_thinking=thinking,
        language=language,
    )

    console.print(f"[dim]Provider: {pc.provider} ({pc.model or 'default model'})[/dim]")
    try:
        result = asyncio.run(_run_chat(config, pc, params))
    except RelayError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        raise SystemExit(1) from e

    if result is not None:
        _render_result(result)
