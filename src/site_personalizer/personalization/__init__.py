"""Summary and personalization generation plus the per-user output store."""
