"""Main entry point for mrautofix."""

from mrautofix.cli import app


def main() -> None:
    """Run the mrautofix CLI (serves the MCP server by default)."""
    app()


if __name__ == "__main__":
    main()
