"""Viyaabhaaram: a small retail billing system (store service + billing core)."""

__version__ = "0.3.0"
