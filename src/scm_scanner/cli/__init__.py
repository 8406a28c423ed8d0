"""Command line interface for SCM Scanner."""
