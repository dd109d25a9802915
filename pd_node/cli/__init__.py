"""CLI command modules for pd-node."""
