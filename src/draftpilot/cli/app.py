from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import typer
import uvicorn

from draftpilot.api.app import create_app
from draftpilot.config import get_settings
from draftpilot.core.controller import DocumentSessionController
from draftpilot.core.errors import DraftpilotError
from draftpilot.core.runtime import SessionRegistry
from draftpilot.logging_config import configure_logging

app = typer.Typer(help="Draftpilot CLI")

SessionAction = Callable[[DocumentSessionController], Awaitable[Any]]


def _run_session(job_id: str, action: SessionAction) -> Any:
    async def _main() -> Any:
        registry = SessionRegistry()
        controller = await registry.open(job_id)
        try:
            return await action(controller)
        finally:
            await registry.close(job_id)

    try:
        return asyncio.run(_main())
    except DraftpilotError as exc:
        typer.echo(json.dumps({"ok": False, "error": str(exc)}, indent=2))
        raise typer.Exit(code=1) from exc


def _echo(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command("status")
def status(job_id: str = typer.Argument(...)) -> None:
    """Show the document state of a job application."""
    configure_logging()

    async def _action(controller: DocumentSessionController) -> dict[str, Any]:
        return controller.snapshot()

    _echo(_run_session(job_id, _action))


@app.command("generate")
def generate(
    job_id: str = typer.Argument(...),
    document: str = typer.Option("cv", "--document", help="cv or cover-letter"),
    language: str | None = typer.Option(None, "--language"),
    theme: str | None = typer.Option(None, "--theme"),
    instructions: str | None = typer.Option(None, "--instructions"),
) -> None:
    configure_logging()
    if document not in {"cv", "cover-letter"}:
        raise typer.BadParameter("document must be 'cv' or 'cover-letter'")

    async def _action(controller: DocumentSessionController) -> dict[str, Any]:
        if document == "cv":
            outcome = await controller.generate_cv(
                language=language,
                theme=theme,
                custom_instructions=instructions,
            )
        else:
            outcome = await controller.generate_cover_letter(language=language, custom_instructions=instructions)
        return outcome.model_dump(mode="json")

    _echo(_run_session(job_id, _action))


@app.command("scan")
def scan(job_id: str = typer.Argument(...)) -> None:
    """Submit a compatibility scan and wait for its scores."""
    configure_logging()

    async def _action(controller: DocumentSessionController) -> dict[str, Any]:
        await controller.submit_scan()
        result = await controller.wait_for_scan()
        return result.model_dump(mode="json") if result else {}

    _echo(_run_session(job_id, _action))


@app.command("analyze")
def analyze(job_id: str = typer.Argument(...), section: str = typer.Argument(...)) -> None:
    configure_logging()

    async def _action(controller: DocumentSessionController) -> dict[str, Any]:
        await controller.analyze_section(section)
        result = await controller.wait_for_analysis()
        return result.model_dump(mode="json") if result else {}

    _echo(_run_session(job_id, _action))


@app.command("finalize")
def finalize(job_id: str = typer.Argument(...)) -> None:
    """Render the final PDFs for a job's draft documents."""
    configure_logging()

    async def _action(controller: DocumentSessionController) -> dict[str, Any]:
        outcome = await controller.finalize()
        return outcome.model_dump(mode="json")

    _echo(_run_session(job_id, _action))


@app.command("delete")
def delete(
    job_id: str = typer.Argument(...),
    document: str = typer.Option(..., "--document", help="cv or cover-letter"),
) -> None:
    configure_logging()
    if document not in {"cv", "cover-letter"}:
        raise typer.BadParameter("document must be 'cv' or 'cover-letter'")

    async def _action(controller: DocumentSessionController) -> dict[str, Any]:
        if document == "cv":
            outcome = await controller.delete_cv()
        else:
            outcome = await controller.delete_cover_letter()
        return outcome.model_dump(mode="json")

    _echo(_run_session(job_id, _action))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
    log_level: str | None = typer.Option(None, "--log-level", help="Overrides LOG_LEVEL"),
) -> None:
    level = configure_logging(log_level)
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(
        app_instance,
        host=host or settings.app_host,
        port=port or settings.app_port,
        log_level=logging.getLevelName(level).lower(),
    )


if __name__ == "__main__":
    app()
