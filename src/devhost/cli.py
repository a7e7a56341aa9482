"""devhost command-line interface.

Commands:
    - bootstrap: Reconcile this Mac into a remote-development host
    - session:   Create-if-absent and attach to a persistent tmux session
    - verify:    Post-flight checks (tailscale, tmux, Homebrew packages)
    - config:    Show or change ~/.devhost/config.toml

The standalone scripts devhost-bootstrap and devhost-session run the
matching subcommand with no required flags.
"""

import logging
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from devhost import __version__
from devhost.bootstrapper import build_bootstrapper
from devhost.click_group import DevhostGroup
from devhost.config_manager import ConfigError, ConfigManager
from devhost.file_lock_manager import LockTimeoutError
from devhost.host_facade import HostFacade
from devhost.log_sanitizer import LogSanitizer
from devhost.modules.command_runner import CommandError, CommandRunner
from devhost.modules.prerequisites import PrerequisiteError
from devhost.reconciler import ReconcileError, ReconcileStep, StepOutcome, StepResult
from devhost.session_launcher import SessionLauncherError, build_launcher
from devhost.verification import HostVerifier

logger = logging.getLogger(__name__)

__all__ = ["bootstrap_main", "main", "session_main"]

OUTCOME_STYLES = {
    StepOutcome.SATISFIED: "[green]✓[/green]",
    StepOutcome.CHANGED: "[green]✓[/green] [yellow](changed)[/yellow]",
    StepOutcome.FAILED: "[red]✗[/red]",
}


def _runner(ctx: click.Context) -> CommandRunner:
    """Runner injected through ctx.obj (tests), else a real one."""
    ctx.ensure_object(dict)
    if "runner" not in ctx.obj:
        ctx.obj["runner"] = CommandRunner()
    return ctx.obj["runner"]


def _print_invocations(console: Console, runner: CommandRunner) -> None:
    console.print()
    console.print("[bold]Commands run:[/bold]")
    for entry in runner.log:
        console.print(f"  [dim]{escape(str(entry))}[/dim] -> {entry.returncode}", highlight=False)


@click.group(cls=DevhostGroup, context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and a list of commands run")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """devhost - keep a Mac reachable for remote development.

    \b
    EXAMPLES:
        # Provision this Mac (idempotent; safe to rerun)
        $ devhost bootstrap

        # Attach to the persistent tmux session (created if missing)
        $ devhost session
        $ ssh mac-studio -t devhost session

        # Check the host after a bootstrap
        $ devhost verify

    \b
    CONFIGURATION:
        Config file: ~/.devhost/config.toml
        Environment: DEVHOST_SESSION_NAME (or SESSION_NAME), DEVHOST_SERVICES,
                     DEVHOST_PACKAGES, TAILSCALE_AUTH_KEY, DEVHOST_CONFIG
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@main.command(name="bootstrap")
@click.option("--config", help="Config file path", type=click.Path())
@click.option(
    "--no-sudo-keepalive",
    is_flag=True,
    help="Do not pre-authorise sudo or keep its timestamp fresh",
)
@click.pass_context
def bootstrap_command(ctx: click.Context, config: str | None, no_sudo_keepalive: bool) -> None:
    """Reconcile this Mac into a remote-development host.

    Installs the Xcode command line tools, Homebrew, tmux and fail2ban, keeps
    the machine awake, enables Remote Login and joins the tailnet. Every step
    checks the host first, so rerunning only fixes drift.

    \b
    Examples:
        devhost bootstrap
        TAILSCALE_AUTH_KEY=tskey-... devhost bootstrap
    """
    console = Console()
    err_console = Console(stderr=True)
    runner = _runner(ctx)

    def progress(step: ReconcileStep, result: StepResult | None) -> None:
        if result is None:
            console.print(f"[bold]==>[/bold] {step.description}")
        elif result.message and result.ok:
            console.print(f"    {OUTCOME_STYLES[result.outcome]} [dim]{escape(result.message)}[/dim]")
        else:
            console.print(f"    {OUTCOME_STYLES[result.outcome]}")

    try:
        bootstrapper = build_bootstrapper(config, runner)
        bootstrapper.run(keep_sudo_alive=not no_sudo_keepalive, progress=progress)

        console.print()
        console.print(
            "[green]✓[/green] Bootstrap complete. "
            "Approve the device in the Tailscale admin console if prompted."
        )

    except ReconcileError as e:
        failed = e.report.failed_step
        err_console.print(f"[red]Error: {escape(LogSanitizer.sanitize_exception(e))}[/red]")
        if failed and failed.output:
            err_console.print(LogSanitizer.sanitize(failed.output), markup=False, highlight=False)
        sys.exit(1)
    except (ConfigError, CommandError) as e:
        err_console.print(f"[red]Error: {escape(LogSanitizer.sanitize_exception(e))}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Bootstrap interrupted; rerun to resume.[/yellow]")
        sys.exit(130)
    finally:
        if ctx.obj.get("verbose"):
            _print_invocations(console, runner)


@main.command(name="session")
@click.argument("session_name", type=str, required=False)
@click.option("--no-attach", is_flag=True, help="Only ensure the session exists")
@click.option("--config", help="Config file path", type=click.Path())
@click.pass_context
def session_command(
    ctx: click.Context, session_name: str | None, no_attach: bool, config: str | None
) -> None:
    """Attach to a persistent tmux session, creating it if absent.

    SESSION_NAME defaults to $DEVHOST_SESSION_NAME, then $SESSION_NAME, then
    session_name in the config file, then "dev".

    \b
    Examples:
        devhost session
        devhost session api-work
        ssh mac-studio -t devhost session
    """
    err_console = Console(stderr=True)
    runner = _runner(ctx)

    try:
        name = ConfigManager.get_session_name(session_name, config)
        exit_code = build_launcher(runner).launch(name, attach=not no_attach)
    except (ConfigError, PrerequisiteError, SessionLauncherError, LockTimeoutError) as e:
        err_console.print(
            f"[red]Error: {escape(LogSanitizer.sanitize_exception(e))}[/red]",
            highlight=False,
        )
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)

    if exit_code != 0:
        err_console.print(f"[red]Error: tmux attach exited {exit_code}[/red]")
    sys.exit(exit_code)


@main.command(name="verify")
@click.option("--config", help="Config file path", type=click.Path())
@click.pass_context
def verify_command(ctx: click.Context, config: str | None) -> None:
    """Run post-flight checks without changing anything."""
    console = Console()
    runner = _runner(ctx)

    try:
        packages = ConfigManager.resolve(config).packages
    except ConfigError as e:
        Console(stderr=True).print(
            f"[red]Error: {escape(LogSanitizer.sanitize_exception(e))}[/red]",
        )
        sys.exit(1)

    report = HostVerifier(HostFacade(runner), runner, packages).run()

    table = Table(title="Host verification")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    for check in report.checks:
        table.add_row(check.name, "[green]ok[/green]" if check.passed else "[red]failed[/red]", check.detail)
    console.print(table)

    if not report.passed:
        sys.exit(1)
    console.print()
    console.print("Next: from a client, run [cyan]ssh <host> -t devhost session[/cyan]")


@main.group(name="config")
def config_group() -> None:
    """Show or change devhost configuration."""


@config_group.command(name="show")
@click.option("--config", help="Config file path", type=click.Path())
def config_show_command(config: str | None) -> None:
    """Show the effective configuration (file plus environment)."""
    console = Console()
    try:
        effective = ConfigManager.resolve(config)
        path = ConfigManager.get_config_path(config)
    except ConfigError as e:
        Console(stderr=True).print(
            f"[red]Error: {escape(LogSanitizer.sanitize_exception(e))}[/red]",
        )
        sys.exit(1)

    table = Table(title=str(path))
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in effective.to_dict().items():
        shown = ", ".join(value) if isinstance(value, list) else str(value)
        table.add_row(key, shown)
    console.print(table)


@config_group.command(name="set")
@click.argument("key", type=str)
@click.argument("value", type=str)
@click.option("--config", help="Config file path", type=click.Path())
def config_set_command(key: str, value: str, config: str | None) -> None:
    """Set a config value (lists are comma separated).

    \b
    Examples:
        devhost config set session_name work
        devhost config set services fail2ban,redis
    """
    try:
        ConfigManager.update_config(config, **{key: value})
    except ConfigError as e:
        Console(stderr=True).print(
            f"[red]Error: {escape(LogSanitizer.sanitize_exception(e))}[/red]",
        )
        sys.exit(1)
    click.echo(f"Set {key} = {value}")


def bootstrap_main() -> None:
    """Entry point for devhost-bootstrap."""
    main.main(args=["bootstrap", *sys.argv[1:]], prog_name="devhost")


def session_main() -> None:
    """Entry point for devhost-session."""
    main.main(args=["session", *sys.argv[1:]], prog_name="devhost")


if __name__ == "__main__":
    main()
