"""Logging, configuration, cache and the engine composition root."""
