"""Typer application for chatline."""

from __future__ import annotations

import asyncio
import json

import typer

from ..api.client import ServiceClient
from ..config import DeliveryMode, Settings, get_settings
from ..errors import ConfigurationError, ServiceError
from ..logging_utils import configure_logging
from ..session.controller import SessionController
from ..session.dispatcher import Dispatcher, RequestOptions
from .live import TurnPrinter, run_chat
from .render import Renderer, create_cli_renderer

app = typer.Typer(name="chatline", help="Terminal client for a chat and agent service.", add_completion=False)


def _load_settings(**overrides: object) -> Settings:
    try:
        return get_settings(**overrides)
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(2) from exc


def build_client(settings: Settings) -> ServiceClient:
    return ServiceClient(settings.api_url, timeout=settings.request_timeout_seconds)


def build_controller(settings: Settings, client: ServiceClient) -> SessionController:
    dispatcher = Dispatcher(client, RequestOptions.from_settings(settings))
    return SessionController(dispatcher, mode=settings.mode, partial_policy=settings.partial_reply_policy)


@app.command()
def chat(
    mode: DeliveryMode | None = typer.Option(None, "--mode", "-m", help="Reply delivery mode"),  # noqa: B008
    api_url: str | None = typer.Option(None, "--api-url", help="Chat service base URL"),  # noqa: B008
    model: str | None = typer.Option(None, "--model", help="Model id"),  # noqa: B008
) -> None:
    """Run an interactive chat session."""
    settings = _load_settings(mode=mode, api_url=api_url, model=model)
    configure_logging(profile="chat", level=settings.log_level)
    renderer = create_cli_renderer()
    asyncio.run(_chat(settings, renderer))


async def _chat(settings: Settings, renderer: Renderer) -> None:
    client = build_client(settings)
    try:
        renderer.welcome()
        renderer.usage_info(api_url=client.base_url, model=settings.model, mode=settings.mode)
        if not await client.health():
            renderer.warning(f"Service at {client.base_url} is not reachable; requests will fail until it is up.")
        await run_chat(build_controller(settings, client), renderer)
    finally:
        client.close()


@app.command()
def ask(
    message: str = typer.Argument(..., help="Message to send"),
    mode: DeliveryMode | None = typer.Option(None, "--mode", "-m", help="Reply delivery mode"),  # noqa: B008
    api_url: str | None = typer.Option(None, "--api-url", help="Chat service base URL"),  # noqa: B008
    model: str | None = typer.Option(None, "--model", help="Model id"),  # noqa: B008
) -> None:
    """Send one message and print the reply."""
    settings = _load_settings(mode=mode, api_url=api_url, model=model)
    configure_logging(profile="default", level=settings.log_level)
    if not asyncio.run(_ask(settings, create_cli_renderer(), message)):
        raise typer.Exit(1)


async def _ask(settings: Settings, renderer: Renderer, message: str) -> bool:
    client = build_client(settings)
    try:
        async with build_controller(settings, client) as controller:
            controller.store.subscribe(TurnPrinter(renderer))
            if not await controller.send(message):
                renderer.error("Nothing to send.")
                return False
            if controller.error:
                renderer.error(controller.error)
                return False
            return True
    finally:
        client.close()


@app.command()
def health(
    api_url: str | None = typer.Option(None, "--api-url", help="Chat service base URL"),  # noqa: B008
) -> None:
    """Check whether the chat service is reachable."""
    settings = _load_settings(api_url=api_url)
    configure_logging(profile="default", level=settings.log_level)
    client = build_client(settings)
    try:
        connected = asyncio.run(client.health())
    finally:
        client.close()
    if not connected:
        typer.echo(f"unreachable: {client.base_url}")
        raise typer.Exit(1)
    typer.echo(f"connected: {client.base_url}")


@app.command()
def models(
    api_url: str | None = typer.Option(None, "--api-url", help="Chat service base URL"),  # noqa: B008
) -> None:
    """List the models the chat service offers."""
    settings = _load_settings(api_url=api_url)
    configure_logging(profile="default", level=settings.log_level)
    client = build_client(settings)
    try:
        payload = asyncio.run(client.list_models())
    except ServiceError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc
    finally:
        client.close()
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
