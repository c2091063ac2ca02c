"""Encoders and parsers for wire formats."""
