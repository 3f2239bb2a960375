"""
Module entry point for RTM-Triage.

This allows running the CLI as:
python -m rtm_triage
"""

from rtm_triage.cli import cli

if __name__ == "__main__":
    cli()
