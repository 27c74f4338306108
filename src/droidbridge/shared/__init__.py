"""Enums, models and exceptions shared by all modules."""
