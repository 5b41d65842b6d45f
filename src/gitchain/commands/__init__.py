"""Typer command implementations for the gitchain CLI."""
