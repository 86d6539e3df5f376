"""Cascade CLI entry point using Click.

Commands:
    cascade start [--port N] [--foreground] [--env-file .env]  - start the webhook server
    cascade stop                                               - stop the running server
    cascade status                                             - check if the server is running
    cascade plan <repo_path> <branch>                          - show the cascade for a branch
    cascade run <repo_path> <branch>                           - run one cascade on a local clone
"""

import logging
from pathlib import Path

import click

from cascade import __version__
from cascade.paths import home as _home


def _get_home(ctx: click.Context) -> Path:
    """Resolve cascade home from context or default."""
    return _home(ctx.obj.get("home_override") if ctx.obj else None)


def _branch_options(f):
    """Shared naming options for ``plan`` and ``run``."""
    f = click.option("--stable", default=None, help="Stable branch name (default: configured, else master).")(f)
    f = click.option("--release-prefix", default="release/", show_default=True, help="Release branch prefix.")(f)
    f = click.option("--development", default="develop", show_default=True, help="Development branch name.")(f)
    return f


@click.group()
@click.version_option(version=__version__, prog_name="cascade")
@click.option(
    "--home", "home_override", type=click.Path(path_type=Path), default=None,
    envvar="CASCADE_HOME",
    help="Override cascade home directory (default: ~/.cascade).",
)
@click.pass_context
def main(ctx: click.Context, home_override: Path | None) -> None:
    """Cascade - forward-merge release branches on pull-request merge."""
    ctx.ensure_object(dict)
    ctx.obj["home_override"] = home_override


# ──────────────────────────────────────────────────────────────
# cascade start / stop / status
# ──────────────────────────────────────────────────────────────

@main.command()
@click.option("--port", type=int, default=None, help="Listen port (default: PORT or config, else 5000).")
@click.option("--foreground", is_flag=True, help="Run in foreground instead of background.")
@click.option(
    "--env-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to .env file to load (TOKEN, BITBUCKET_USERNAME, ...).",
)
@click.pass_context
def start(ctx: click.Context, port: int | None, foreground: bool, env_file: Path | None) -> None:
    """Start the webhook server."""
    from cascade.daemon import start_daemon, is_running

    if env_file:
        from dotenv import load_dotenv
        load_dotenv(env_file)
        click.echo(f"Loaded env file: {env_file}")

    hc_home = _get_home(ctx)

    if not foreground:
        alive, pid = is_running(hc_home)
        if alive:
            click.echo(f"Cascade already running (PID {pid})")
            return

    try:
        pid = start_daemon(hc_home, port=port, foreground=foreground)
    except RuntimeError as exc:
        raise click.ClickException(str(exc))
    if pid:
        click.echo(f"Cascade started (PID {pid})")


@main.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the running server."""
    from cascade.daemon import stop_daemon, is_running

    hc_home = _get_home(ctx)
    alive, _ = is_running(hc_home)
    if not alive:
        click.echo("Cascade is not running")
        return

    click.echo("Stopping cascade...")
    if stop_daemon(hc_home):
        click.echo("Cascade stopped")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Check if the server is running."""
    from cascade.daemon import is_running

    alive, pid = is_running(_get_home(ctx))
    if alive:
        click.echo(f"Cascade running (PID {pid})")
    else:
        click.echo("Cascade not running")


# ──────────────────────────────────────────────────────────────
# cascade plan / run (local clone, no Bitbucket API)
# ──────────────────────────────────────────────────────────────

def _local_client(ctx: click.Context, repo_path: Path, stable: str | None):
    from cascade.config import load_settings
    from cascade.repo import RepositoryClient

    settings = load_settings(_get_home(ctx))
    if not (repo_path / ".git").exists():
        raise click.ClickException(f"No .git directory found at {repo_path}")
    stable_name = stable or settings.stable_branch
    client = RepositoryClient(
        repo_path,
        credentials=settings.credentials,
        author=settings.author,
        stable_name=stable_name,
    )
    return client, stable_name


@main.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("branch")
@_branch_options
@click.option("--no-fetch", is_flag=True, help="Use remote-tracking branches as they are.")
@click.pass_context
def plan(
    ctx: click.Context,
    repo_path: Path,
    branch: str,
    development: str,
    release_prefix: str,
    stable: str | None,
    no_fetch: bool,
) -> None:
    """Print the cascade BRANCH would be merged through."""
    from cascade.branches import CascadeOptions, build_cascade
    from cascade.errors import CascadeError

    client, stable_name = _local_client(ctx, repo_path, stable)
    options = CascadeOptions(development, release_prefix, stable_name)
    try:
        if not no_fetch:
            client.fetch()
        cascade = build_cascade(client, options, branch)
    except CascadeError as exc:
        raise click.ClickException(str(exc))

    click.echo(branch)
    for target in cascade:
        click.echo(f"  -> {target}")


@main.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("branch")
@_branch_options
@click.pass_context
def run(
    ctx: click.Context,
    repo_path: Path,
    branch: str,
    development: str,
    release_prefix: str,
    stable: str | None,
) -> None:
    """Cascade BRANCH forward in the local clone at REPO_PATH and push."""
    from cascade.branches import CascadeOptions
    from cascade.logging_setup import configure_logging
    from cascade.merge import cascade_merge

    configure_logging(console=True, level=logging.INFO)
    client, stable_name = _local_client(ctx, repo_path, stable)
    state = cascade_merge(client, branch, CascadeOptions(development, release_prefix, stable_name))
    if not state.success:
        click.echo(str(state), err=True)
        raise SystemExit(1)
    click.echo(str(state))


if __name__ == "__main__":
    main()
