"""
SvcHarness CLI

Click-based entry point. Only ``--ssl`` is interpreted by the harness;
every other argument (including ``--help`` and ``--``) is forwarded to the
test runner exactly as given.
"""

import sys
from typing import List, Sequence, Tuple

import click

from svcharness.errors import ConfigError, HarnessInterrupted
from svcharness.harness import run_harness
from svcharness.logging import EXIT_SIGNAL_BASE, get_logger, init_cli_logging

logger = get_logger(__name__)

SSL_FLAG = "--ssl"
END_OF_OPTIONS = "--"


def split_harness_args(args: Sequence[str]) -> Tuple[bool, List[str]]:
    """
    Separate the harness flag from the runner's arguments.

    ``--ssl`` is taken out only before the first ``--``; everything else,
    the ``--`` itself included, is kept in order.
    """
    secure = False
    forwarded: List[str] = []
    for index, arg in enumerate(args):
        if arg == END_OF_OPTIONS:
            forwarded.extend(args[index:])
            break
        if arg == SSL_FLAG:
            secure = True
            continue
        forwarded.append(arg)
    return secure, forwarded


class PassthroughCommand(click.Command):
    """Keeps the raw argument list, since click's parser consumes ``--``."""

    def parse_args(self, ctx: click.Context, args: List[str]) -> List[str]:
        ctx.meta["svcharness.argv"] = list(args)
        return super().parse_args(ctx, args)


def _progress_dot() -> None:
    click.echo(".", nl=False, err=True)


@click.command(
    cls=PassthroughCommand,
    context_settings={
        "ignore_unknown_options": True,
        "allow_extra_args": True,
        "allow_interspersed_args": True,
    },
    add_help_option=False,
)
@click.option("--ssl", "secure", is_flag=True, help="Serve over TLS on the alternate port")
@click.argument("passthrough", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def cli(ctx, secure, passthrough):
    """Boot a throwaway service instance and run the test suite against it."""
    from svcharness.config import load_config

    secure, forwarded = split_harness_args(ctx.meta["svcharness.argv"])

    try:
        config = load_config()
    except ConfigError as e:
        click.echo(f"svcharness: {e}", err=True)
        ctx.exit(e.exit_code)

    init_cli_logging(config.log_level, json_output=config.log_json)

    try:
        run = run_harness(config, forwarded, secure=secure, progress=_progress_dot)
    except HarnessInterrupted as e:
        # Arrived before teardown was armed; nothing had been allocated yet.
        click.echo(f"svcharness: {e}", err=True)
        ctx.exit(EXIT_SIGNAL_BASE + e.signum)
    ctx.exit(run.exit_code)


def main() -> None:
    cli(prog_name="svcharness")


if __name__ == "__main__":
    sys.exit(main())
