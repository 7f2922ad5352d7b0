"""Core models, errors, fingerprints and logging."""
