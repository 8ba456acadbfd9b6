"""Entry point for `python -m marketclaw`."""

from marketclaw.cli.commands import app

if __name__ == "__main__":
    app()
