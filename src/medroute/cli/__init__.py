"""CLI entry point for medroute."""

import click

from medroute.cli.commands import batch_cmd, explain_cmd, health_cmd, query_cmd, sources_cmd
from medroute.config import load_settings
from medroute.logging_setup import configure_logging


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
@click.option("--log-level", default=None, help="Override MEDROUTE_LOG_LEVEL.")
@click.option("--json-logs", is_flag=True, help="Emit structlog events as JSON.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str | None, json_logs: bool):
    """Route medical queries across clinical-trial, literature and drug-safety sources."""
    settings = load_settings(config_path)
    configure_logging(log_level or settings.log_level, json_output=json_logs)
    ctx.obj = settings


main.add_command(query_cmd)
main.add_command(batch_cmd)
main.add_command(explain_cmd)
main.add_command(sources_cmd)
main.add_command(health_cmd)
