"""CLI module for threadmem."""
