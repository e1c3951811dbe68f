"""Root CLI group and version flag."""

import signal

import click

# Keep SIGPIPE from killing the process when a piped stdout closes mid-echo.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)

from planbridge import __version__
from planbridge.commands.chat import chat
from planbridge.commands.check import check
from planbridge.commands.serve import serve


@click.group()
@click.version_option(version=__version__, prog_name="planbridge")
def cli() -> None:
    """planbridge — stream Claude CLI plan-mode turns over Server-Sent Events."""


cli.add_command(serve)
cli.add_command(chat)
cli.add_command(check)
