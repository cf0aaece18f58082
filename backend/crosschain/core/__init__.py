"""Core utilities: settings, logging, errors, retry, locks and scheduling."""
