from typing import Annotated

from typer import Exit, Option, Typer

from omni_sidecar import __version__
from omni_sidecar.cli.sidecar.commands import start, stop
from omni_sidecar.utils import console

app = Typer(
    name="omni-sidecar",
    help="Run the omni-cache sidecar alongside a CI job",
    no_args_is_help=True,
)


def _print_version(value: bool) -> None:
    if value:
        console.print(f"omni-sidecar {__version__}")
        raise Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        Option(
            "--version",
            callback=_print_version,
            is_eager=True,
            help="Show the version and exit",
        ),
    ] = False,
) -> None:
    """Run the omni-cache sidecar alongside a CI job."""


app.command(name="start", help="Install and start omni-cache in the background")(start)
app.command(name="stop", help="Report statistics and stop omni-cache")(stop)


if __name__ == "__main__":
    app()
