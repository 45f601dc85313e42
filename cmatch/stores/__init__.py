"""SQLAlchemy-backed implementations of the store protocols."""
