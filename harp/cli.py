"""HARP CLI — Typer application root.

Entry point for the ``harp`` console script::

    harp resolve owner/repo
    harp controls https://owner-repo.hf.space --json
    harp process owner/repo take.mid --output out.mid --set "Pitch Shift=7"

Exit codes follow :class:`harp.errors.ExitCode`: 0 success, 1 user error,
3 remote / network error, 130 cancelled (Ctrl-C during ``process``).
"""
from __future__ import annotations

import asyncio
import json
import logging
import signal
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer

from harp import __version__
from harp.core.address import EndpointDescriptor, resolve_address
from harp.core.controls import Control, ControlSchema, ControlType
from harp.core.status import SessionStatus
from harp.errors import AddressError, ExitCode, HarpError
from harp.logging_setup import configure_logging
from harp.services.session import JobResult, ModelSession
from harp.services.status_watcher import StatusWatcher

logger = logging.getLogger(__name__)

cli = typer.Typer(
    name="harp",
    help="HARP — run schema-less Gradio inference Spaces from the command line.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"harp {__version__}")
        raise typer.Exit()


@cli.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    no_log_file: bool = typer.Option(False, "--no-log-file", help="Do not write HARP.log."),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit.",
    ),
) -> None:
    from harp.config import settings

    cfg = settings.model_copy(update={"log_file": None}) if no_log_file else settings
    configure_logging(cfg, verbose=verbose)


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _descriptor_dict(endpoint: EndpointDescriptor) -> dict[str, object]:
    data = asdict(endpoint)
    data["kind"] = endpoint.kind.value
    return data


def _render_descriptor(endpoint: EndpointDescriptor) -> str:
    lines = [
        f"kind:      {endpoint.kind.value}",
        f"gradio:    {endpoint.canonical_url}",
        f"page:      {endpoint.display_url}",
    ]
    if endpoint.space_id:
        lines.append(f"space:     {endpoint.space_id}")
    return "\n".join(lines)


def _describe_control(ctrl: Control) -> str:
    match ctrl.ctrl_type:
        case ControlType.SLIDER:
            return f"{ctrl.value} in [{ctrl.minimum}, {ctrl.maximum}] step {ctrl.step}"  # type: ignore[attr-defined]
        case ControlType.NUMBER_BOX:
            return f"{ctrl.value} in [{ctrl.min}, {ctrl.max}]"  # type: ignore[attr-defined]
        case ControlType.COMBO_BOX:
            return f"{ctrl.value!r} of {ctrl.options}"  # type: ignore[attr-defined]
        case ControlType.AUDIO_IN | ControlType.MIDI_IN:
            return "(input file)"
        case _:
            return repr(ctrl.value)


def _render_schema(schema: ControlSchema) -> str:
    card = schema.card
    lines = [card.name or "(unnamed model)"]
    if card.author:
        lines.append(f"by {card.author}")
    if card.description:
        lines.append(card.description)
    if card.tags:
        lines.append("tags: " + ", ".join(card.tags))
    lines.append("")
    lines.append("Controls:")
    for ctrl in schema.controls:
        lines.append(f"  {ctrl.ctrl_type.value:<11} {ctrl.label or '(no label)'}: {_describe_control(ctrl)}")
    return "\n".join(lines)


def _fail(exc: HarpError) -> typer.Exit:
    typer.echo(f"❌ {exc.user_message}", err=True)
    return typer.Exit(code=int(exc.exit_code))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@cli.command("resolve", help="Show how a Space address resolves.")
def resolve_cmd(
    address: str = typer.Argument(..., help="localhost URL, hf.space URL, huggingface.co URL or owner/repo."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON."),
) -> None:
    try:
        endpoint = resolve_address(address)
    except AddressError as exc:
        raise _fail(exc)
    if as_json:
        typer.echo(json.dumps(_descriptor_dict(endpoint), indent=2))
    else:
        typer.echo(_render_descriptor(endpoint))


async def _load(address: str) -> ModelSession:
    session = ModelSession()
    await session.load_schema(address)
    return session


@cli.command("controls", help="Fetch and print a Space's model card and controls.")
def controls_cmd(
    address: str = typer.Argument(..., help="Space address."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON."),
) -> None:
    try:
        session = asyncio.run(_load(address))
    except HarpError as exc:
        raise _fail(exc)
    assert session.schema is not None
    if as_json:
        typer.echo(json.dumps(session.schema.to_dict(), indent=2))
    else:
        typer.echo(_render_schema(session.schema))


def _apply_assignments(session: ModelSession, assignments: list[str]) -> None:
    assert session.schema is not None
    for item in assignments:
        label, sep, value = item.partition("=")
        if not sep:
            raise typer.BadParameter(f"expected LABEL=VALUE, got {item!r}", param_hint="--set")
        ctrl = session.schema.find_by_label(label)
        if ctrl is None:
            raise typer.BadParameter(f"no control labelled {label.strip()!r}", param_hint="--set")
        try:
            session.set_control_value(ctrl.id, value)
        except ValueError as exc:
            raise typer.BadParameter(f"{label.strip()}: {exc}", param_hint="--set") from exc


async def _process_async(
    address: str,
    input_file: Path,
    output: Optional[Path],
    assignments: list[str],
) -> JobResult:
    session = await _load(address)
    _apply_assignments(session, assignments)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler unavailable; Ctrl-C will abort without cancelling cleanly")

    watcher = StatusWatcher(session)
    watcher.add_listener(lambda status: typer.echo(f"… {status.value}", err=True))
    try:
        async with watcher:
            return await session.start_submit(input_file, output)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@cli.command("process", help="Process a file with a Space and write the result.")
def process_cmd(
    address: str = typer.Argument(..., help="Space address."),
    input_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Input audio/MIDI file."),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Where to write the result (default: overwrite the input)."
    ),
    assignments: Optional[list[str]] = typer.Option(
        None, "--set", "-s", help="Set a control by label, e.g. --set 'Pitch Shift=7'. Repeatable."
    ),
) -> None:
    try:
        result = asyncio.run(_process_async(address, input_file, output, assignments or []))
    except HarpError as exc:
        raise _fail(exc)

    if result.status is SessionStatus.DONE:
        typer.echo(f"✅ Wrote {result.output_path} in {result.duration_s:.1f}s")
        return
    if result.status is SessionStatus.CANCELLED:
        typer.echo("🛑 Cancelled", err=True)
        raise typer.Exit(code=int(ExitCode.CANCELLED))
    typer.echo(f"❌ {result.error}", err=True)
    raise typer.Exit(code=int(ExitCode.REMOTE_ERROR))


if __name__ == "__main__":
    cli()
