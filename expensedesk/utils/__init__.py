"""Shared helpers for blueprints and services."""
