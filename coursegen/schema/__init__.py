"""ORM models for the course generation service."""
