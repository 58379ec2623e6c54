"""Pydantic schemas for pipeline definitions and structured agent output."""
