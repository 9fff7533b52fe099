"""Typed store boundary over the SQLAlchemy repositories."""
