"""
CLI Module - Command-line interface for the Gradescope client.
==============================================================

Provides CLI commands for:
- Listing courses, assignments, regrades, submissions and outlines
- Taking a full snapshot for the ingestion job
- Showing the effective configuration

Usage:
    gradescope --help
    gradescope courses
    gradescope assignments "EECS 203"
    gradescope regrades "EECS 203" "Homework 1"
    gradescope snapshot -c "EECS 203" -o snapshot.json --strict

Components:
- main: Typer CLI application
"""

from gradescope_client.cli.main import app, cli

__all__ = ["app", "cli"]
