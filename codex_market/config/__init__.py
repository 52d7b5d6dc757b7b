"""Configuration schemas, parsing, and file locations."""
