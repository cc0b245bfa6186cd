"""Command line interface for nvimclient."""
