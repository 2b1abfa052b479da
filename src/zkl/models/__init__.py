"""Pydantic boundary models."""
