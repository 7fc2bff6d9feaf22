"""Command-line interface for logmask."""

import json
import sys
import logging
from pathlib import Path
from typing import Optional

import click
import yaml

from logmask import __version__
from logmask.config import MaskingSettings, build_adapter, load_settings, load_settings_file
from logmask.registry import RuleSet, load_rule_set


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _settings(
    config: Optional[Path],
    rules: tuple[Path, ...],
    no_defaults: bool,
) -> MaskingSettings:
    """Merge a config file with rule options given on the command line."""
    settings = load_settings_file(config) if config else load_settings()
    if rules:
        settings.rule_paths = [str(p) for p in rules]
    if no_defaults:
        settings.include_defaults = False
    return settings


def _load(rules: tuple[Path, ...], no_defaults: bool) -> RuleSet:
    paths = [str(p) for p in rules] if rules else None
    return load_rule_set(paths=paths, include_defaults=False if no_defaults else None)


rules_option = click.option(
    "--rules",
    "-r",
    type=click.Path(exists=True, path_type=Path),
    multiple=True,
    help="Rule files to load (uses defaults if not specified)",
)
no_defaults_option = click.option(
    "--no-defaults",
    is_flag=True,
    help="Do not load the packaged default rules",
)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """logmask: Mask sensitive data in log lines."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@main.command()
@click.option(
    "--text",
    "-t",
    help="Text to mask (use --in for file input, stdin otherwise)",
)
@click.option(
    "--in",
    "input_file",
    type=click.Path(exists=True, path_type=Path),
    help="Input file to mask",
)
@click.option(
    "--out",
    "output_file",
    type=click.Path(path_type=Path),
    help="Output file (prints to stdout if not specified)",
)
@rules_option
@no_defaults_option
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file",
)
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.option(
    "--stats",
    is_flag=True,
    help="Print masking statistics",
)
def mask(
    text: Optional[str],
    input_file: Optional[Path],
    output_file: Optional[Path],
    rules: tuple[Path, ...],
    no_defaults: bool,
    config: Optional[Path],
    output: str,
    stats: bool,
) -> None:
    """Mask sensitive data in text, a file or stdin."""
    adapter = build_adapter(_settings(config, rules, no_defaults))

    if text is None and input_file is None:
        # Streaming mode: one log line at a time through the adapter.
        dropped = 0
        for line in sys.stdin:
            masked = adapter.transform(line.rstrip("\n"))
            if masked is None:
                dropped += 1
                continue
            click.echo(masked)
        if stats and dropped:
            click.echo(f"[Dropped {dropped} lines]", err=True)
        return

    if text is not None and input_file is not None:
        raise click.UsageError("Use either --text or --in, not both")
    source = input_file.read_text(encoding="utf-8") if input_file is not None else text

    result = adapter.engine.apply(source)

    if output == "json":
        rendered = json.dumps(
            {
                "text": result.redacted_text,
                "original_length": result.original_length,
                "redaction_count": result.redaction_count,
                "matched_rule_ids": list(result.matched_rule_ids),
                "spans": [
                    {"rule_id": s.rule_id, "start": s.start, "end": s.end}
                    for s in result.spans
                ],
            },
            indent=2,
        )
    else:
        rendered = result.redacted_text

    if output_file:
        output_file.write_text(rendered, encoding="utf-8")
        if stats:
            click.echo(f"Masked {result.redaction_count} spans to {output_file}")
    else:
        click.echo(rendered)
        if stats:
            click.echo(f"\n[Masked {result.redaction_count} spans]", err=True)


@main.command()
@rules_option
@no_defaults_option
def check(rules: tuple[Path, ...], no_defaults: bool) -> None:
    """Compile rule files and report rejected rules."""
    try:
        rule_set = _load(rules, no_defaults)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    click.echo(f"Loaded {len(rule_set)} rules")
    for error in rule_set.rejected:
        click.echo(f"  ✗ {error.rule_id}: {error.reason}")

    if rule_set.rejected:
        click.echo(f"{len(rule_set.rejected)} rules rejected", err=True)
        sys.exit(1)


@main.command("list-rules")
@rules_option
@no_defaults_option
def list_rules(rules: tuple[Path, ...], no_defaults: bool) -> None:
    """List loaded rules in evaluation order."""
    rule_set = _load(rules, no_defaults)

    click.echo(f"Loaded {len(rule_set)} rules\n")
    for rule in rule_set:
        click.echo(
            f"  {rule.id:<28} {rule.priority:>5}  {rule.kind.value:<11}"
            f" {rule.replacement.strategy.value:<8} {rule.description}"
        )


@main.command()
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to listen on",
)
@click.option(
    "--host",
    "-h",
    default=None,
    help="Host to bind to",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file",
)
@click.option(
    "--reload",
    is_flag=True,
    help="Enable auto-reload (development only)",
)
@click.pass_context
def serve(
    ctx: click.Context,
    port: Optional[int],
    host: Optional[str],
    config: Optional[Path],
    reload: bool,
) -> None:
    """Start HTTP server."""
    import uvicorn
    from logmask.server import create_app

    config_data = {}
    if config:
        with open(config, "r") as f:
            config_data = yaml.safe_load(f) or {}

    # Override with CLI options
    server_config = config_data.get("server", {})
    port = port or server_config.get("port", 8080)
    host = host or server_config.get("host", "127.0.0.1")

    click.echo(f"Starting server on {host}:{port}")

    app = create_app(config_data)

    uvicorn.run(
        app,
        host=host,
        port=port,
        reload=reload,
        log_level="info" if ctx.obj.get("verbose") else "warning",
    )


if __name__ == "__main__":
    main()
