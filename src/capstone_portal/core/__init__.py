"""Core domain layer: models, schemas, workflow services and infrastructure helpers."""
