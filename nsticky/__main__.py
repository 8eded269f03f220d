"""Entry point for ``python -m nsticky``."""

from .cli import cli

if __name__ == "__main__":
    cli()
