"""Allow ``python -m sheet_rollup``."""

from sheet_rollup.cli import app

if __name__ == "__main__":
    app()
