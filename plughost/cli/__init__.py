"""CLI module for plughost."""
