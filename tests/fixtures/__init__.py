"""Test fixtures for platform API payloads."""
