"""edgeswap CLI (Typer)."""
