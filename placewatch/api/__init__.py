"""Placewatch dashboard API (FastAPI)."""
