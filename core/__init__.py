"""Core infrastructure: configuration, models, protocols, storage and the event bus."""
