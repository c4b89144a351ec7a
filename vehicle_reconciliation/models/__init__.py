"""Database tables and domain models."""
