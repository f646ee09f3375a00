"""Subcommands of the codexline CLI."""
