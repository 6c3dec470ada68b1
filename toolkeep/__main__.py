"""Entry point for running toolkeep as a module.

Usage:
    python -m toolkeep status
    python -m toolkeep install gemini-cli
    python -m toolkeep --help
"""

from toolkeep.cli import app

if __name__ == "__main__":
    app()
