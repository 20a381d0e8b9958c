"""DMS Database — SQLAlchemy base, models and session management."""
