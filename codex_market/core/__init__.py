"""Core installation logic."""
