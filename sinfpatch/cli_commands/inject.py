"""Inject/inspect CLI command registrations."""

from __future__ import annotations

import json
from pathlib import Path

import click
from pydantic import ValidationError

from sinfpatch.errors import SinfPatchError


def _exit_code_for(exc: SinfPatchError) -> int:
    return 2 if exc.retryable else 1


def _read_metadata(metadata_b64: str | None, metadata_file: str | None) -> bytes | None:
    from sinfpatch.inject.contracts import decode_transport_base64

    if metadata_b64 is not None and metadata_file is not None:
        raise click.UsageError("Use either --metadata-b64 or --metadata-file, not both.")
    if metadata_b64 is not None:
        text = Path(metadata_b64).expanduser().read_text(encoding="utf-8", errors="replace")
        if text.strip() == "":
            return None
        try:
            return decode_transport_base64(text)
        except ValueError as exc:
            raise click.UsageError(f"--metadata-b64: {exc}") from exc
    if metadata_file is not None:
        return Path(metadata_file).expanduser().read_bytes()
    return None


def _build_cfg(ctx: click.Context, backend: str | None):
    from omegaconf import OmegaConf

    cfg = ctx.obj["cfg"] if ctx.obj and "cfg" in ctx.obj else None
    if cfg is None:
        from sinfpatch.utils.config import load_config

        cfg = load_config()
    if backend is not None:
        cfg = OmegaConf.merge(cfg, OmegaConf.create({"archive": {"backend": backend}}))
    return cfg


@click.command("inject")
@click.option("--archive", "-a", "archive_path", required=True, type=click.Path(exists=True, dir_okay=False), help="IPA to patch in place")
@click.option("--sinfs", "-s", "sinfs_path", required=True, type=click.Path(exists=True, dir_okay=False), help='JSON array of {"id": int, "sinf": base64}')
@click.option("--metadata-b64", "-m", default=None, type=click.Path(exists=True, dir_okay=False), help="File holding base64 iTunesMetadata")
@click.option("--metadata-file", default=None, type=click.Path(exists=True, dir_okay=False), help="Raw iTunesMetadata plist file")
@click.option("--backend", type=click.Choice(["zipfile", "infozip"]), default=None, help="Override archive.backend")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def inject(
    ctx: click.Context,
    archive_path: str,
    sinfs_path: str,
    metadata_b64: str | None,
    metadata_file: str | None,
    backend: str | None,
    as_json: bool,
) -> None:
    """Inject sinfs (and optional iTunesMetadata) into an IPA."""
    from sinfpatch.inject.contracts import load_sinf_blobs
    from sinfpatch.inject.injector import inject_sinfs

    cfg = _build_cfg(ctx, backend)
    try:
        sinfs = load_sinf_blobs(Path(sinfs_path))
    except (ValueError, ValidationError) as exc:
        raise click.UsageError(f"--sinfs: {str(exc)[:300]}") from exc
    metadata = _read_metadata(metadata_b64, metadata_file)

    try:
        result = inject_sinfs(archive_path, sinfs, metadata, cfg=cfg)
    except SinfPatchError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(_exit_code_for(exc)) from exc

    if as_json:
        click.echo(result.to_json())
        return
    click.echo(f"Bundle: {result.bundle.bundle_name}.app ({result.bundle.source_kind})")
    for item in result.items:
        click.echo(f"  + {item.entry_path} ({len(item.data)} bytes)")
    if result.metadata_converted is False:
        click.echo("  iTunesMetadata injected as supplied (not converted)")
    click.echo(f"Wrote: {result.wrote}")


@click.command("inspect")
@click.option("--archive", "-a", "archive_path", required=True, type=click.Path(exists=True, dir_okay=False), help="IPA to inspect")
@click.option("--backend", type=click.Choice(["zipfile", "infozip"]), default=None, help="Override archive.backend")
@click.option("--json", "as_json", is_flag=True, help="Print the bundle context as JSON")
@click.pass_context
def inspect(ctx: click.Context, archive_path: str, backend: str | None, as_json: bool) -> None:
    """Show where sinfs would be injected, without writing."""
    from sinfpatch.inject.injector import inspect_archive
    from sinfpatch.inject.planner import bundle_prefix

    cfg = _build_cfg(ctx, backend)
    try:
        context = inspect_archive(archive_path, cfg=cfg)
    except SinfPatchError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(_exit_code_for(exc)) from exc

    if as_json:
        click.echo(json.dumps(context.to_dict(), ensure_ascii=False, indent=2))
        return
    payload = context.to_dict()
    click.echo(f"Bundle: {bundle_prefix(context.bundle_name)}")
    click.echo(f"Source: {context.source_kind}")
    for sinf_path in payload.get("sinf_paths", []):
        click.echo(f"  slot: {sinf_path}")
    if "executable" in payload:
        click.echo(f"  executable: {payload['executable']}")


def register_inject_commands(cli: click.Group) -> None:
    """Register inject/inspect commands."""
    cli.add_command(inject)
    cli.add_command(inspect)
