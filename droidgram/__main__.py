"""Entry point for `python -m droidgram`."""

from droidgram.cli.commands import app

if __name__ == "__main__":
    app()
