"""Entry point for ``python -m nvimclient``."""

from nvimclient.cli.commands import app

if __name__ == "__main__":
    app()
