"""CLI entry point for Bedrock Relay.

Provides ``models``, ``translate`` and ``chat`` sub-commands using Click
and Rich for output formatting.

Usage::

    bedrock-relay models --vendor nova
    bedrock-relay translate request.json
    bedrock-relay chat request.json --stream
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from bedrock_relay.client import RelayClient
from bedrock_relay.config import RelaySettings
from bedrock_relay.errors import RelayError
from bedrock_relay.images import HttpImageFetcher
from bedrock_relay.middleware import LoggingMiddleware
from bedrock_relay.models import ChatRequest
from bedrock_relay.registry import DEFAULT_REGISTRY

console = Console()
err_console = Console(stderr=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


def _load_settings(verbose: bool) -> RelaySettings:
    load_dotenv()
    try:
        settings = RelaySettings.from_env()
    except RelayError as exc:
        err_console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise SystemExit(1) from exc
    _setup_logging("DEBUG" if verbose else settings.log_level)
    return settings


def _load_request(path: str, model: str | None) -> ChatRequest:
    try:
        with open(path, encoding="utf-8") as fh:
            raw: Any = json.load(fh)
        request = ChatRequest.from_dict(raw)
    except (OSError, json.JSONDecodeError, RelayError) as exc:
        err_console.print(f"[red]Failed to load request:[/red] {exc}")
        raise SystemExit(1) from exc
    if model:
        request.model = model
    return request


@click.group()
@click.version_option(package_name="bedrock-relay")
def main() -> None:
    """Bedrock Relay - OpenAI-shaped chat completions over AWS Bedrock."""


@main.command()
@click.option("--vendor", default=None, help="Only list models of this vendor.")
def models(vendor: str | None) -> None:
    """List the model names the relay can resolve."""
    table = Table(title="Models")
    table.add_column("Model", style="cyan")
    table.add_column("Vendor")
    table.add_column("Bedrock model id")
    for entry in sorted(DEFAULT_REGISTRY.list_models(vendor), key=lambda e: e.name):
        table.add_row(entry.name, entry.vendor, entry.model_id)
    console.print(table)


@main.command()
@click.argument("request_json", type=click.Path(exists=True, dir_okay=False))
@click.option("--model", default=None, help="Override the request's model.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def translate(request_json: str, model: str | None, verbose: bool) -> None:
    """Print the vendor-native body for a request without calling the vendor."""
    settings = _load_settings(verbose)
    request = _load_request(request_json, model)
    client = RelayClient(
        invoker=_NoInvoker(),
        images=HttpImageFetcher(timeout=settings.image_timeout),
    )
    try:
        body = asyncio.run(client.translate(request))
    except RelayError as exc:
        err_console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        raise SystemExit(1) from exc
    console.print_json(json.dumps(body))


@main.command()
@click.argument("request_json", type=click.Path(exists=True, dir_okay=False))
@click.option("--model", default=None, help="Override the request's model.")
@click.option("--stream/--no-stream", default=None, help="Override the request's stream flag.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def chat(request_json: str, model: str | None, stream: bool | None, verbose: bool) -> None:
    """Send a request to Bedrock and print the canonical response."""
    settings = _load_settings(verbose)
    request = _load_request(request_json, model)
    if stream is not None:
        request.stream = stream
    client = RelayClient.from_env(settings, middleware=[LoggingMiddleware(logging.DEBUG)])
    try:
        asyncio.run(_chat(client, request))
    except RelayError as exc:
        err_console.print(f"[red]{type(exc).__name__} ({exc.status_code}):[/red] {exc}")
        raise SystemExit(1) from exc


async def _chat(client: RelayClient, request: ChatRequest) -> None:
    if not request.stream:
        response = await client.complete(request)
        console.print_json(json.dumps(response.to_dict()))
        return
    frames = await client.stream_sse(request)
    async for frame in frames:
        sys.stdout.write(frame)
        sys.stdout.flush()


class _NoInvoker:
    """Invoker for dry runs; any vendor call is a programming error."""

    async def invoke(self, model_id: str, body: dict[str, Any]) -> bytes:
        raise RuntimeError("translate does not call the vendor")

    async def invoke_stream(self, model_id: str, body: dict[str, Any]) -> Any:
        raise RuntimeError("translate does not call the vendor")


if __name__ == "__main__":
    main()
