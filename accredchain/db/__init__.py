"""SQLAlchemy schema and engine management."""
