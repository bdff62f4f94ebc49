"""Entry point for `python -m timecapsule`."""

from .cli import cli

if __name__ == "__main__":
    cli()
