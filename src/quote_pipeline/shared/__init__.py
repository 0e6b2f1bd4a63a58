"""Shared models, enums and errors used across layers."""
