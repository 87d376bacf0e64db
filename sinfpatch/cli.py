"""CLI interface for sinfpatch using Click."""

from __future__ import annotations

import click

from sinfpatch.cli_commands import register_inject_commands


@click.group()
@click.option("--config", "-c", default=None, help="Path to custom YAML config")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--log-file", default=None, help="Also write logs to this file")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool, log_file: str | None) -> None:
    """sinfpatch: inject sinfs and iTunesMetadata into IPA archives."""
    from sinfpatch.utils.config import load_config

    overrides = {}
    if verbose:
        overrides["general.log_level"] = "DEBUG"

    cfg = load_config(overrides=overrides or None, config_path=config)
    ctx.ensure_object(dict)
    ctx.obj["cfg"] = cfg

    from sinfpatch.utils.logger import setup_logger
    setup_logger("sinfpatch", level=cfg.general.log_level, log_file=log_file)


register_inject_commands(cli)


if __name__ == "__main__":
    cli()
