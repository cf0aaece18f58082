"""Deployment store: models, database manager and repositories."""
