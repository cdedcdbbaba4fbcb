"""Shared infrastructure: database, models, credits, logging and errors."""
