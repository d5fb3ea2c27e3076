"""Shared utilities for the conversion gateway."""
