"""CLI entry point for python -m eduvid"""
from eduvid.cli.commands import app

if __name__ == "__main__":
    app()
