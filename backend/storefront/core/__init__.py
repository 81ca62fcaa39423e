"""Shared configuration, logging and identity utilities."""
