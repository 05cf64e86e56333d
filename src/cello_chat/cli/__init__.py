"""Command line interface for Cello Chat."""
