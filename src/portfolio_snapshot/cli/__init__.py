"""Command line interface (``python -m portfolio_snapshot.cli``)."""
