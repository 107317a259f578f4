"""Shared configuration, observability and key handling."""
