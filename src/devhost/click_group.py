"""Custom Click group with automatic help display on errors.

Mistyped commands and bad options print the error followed by the help for
the most specific command, then exit with the usage error code.
"""

from typing import Any

import click


class DevhostGroup(click.Group):
    """Click group that shows contextual help when a command is misused."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except (
            click.exceptions.UsageError,
            click.exceptions.BadParameter,
            click.exceptions.MissingParameter,
        ) as e:
            click.echo(f"Error: {e.format_message()}", err=True)

            # Prefer the subcommand context if the error came from one
            error_ctx = e.ctx if e.ctx else ctx
            click.echo("", err=True)
            click.echo(error_ctx.get_help(), err=True)
            error_ctx.exit(e.exit_code)

    def resolve_command(self, ctx: click.Context, args: list[str]) -> Any:
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            click.echo(f"Error: {e.format_message()}", err=True)
            click.echo("", err=True)
            click.echo(ctx.get_help(), err=True)
            ctx.exit(e.exit_code)


__all__ = ["DevhostGroup"]
