"""Synchronization services and the engine that schedules them."""
