"""Command line clients for the edge node."""
