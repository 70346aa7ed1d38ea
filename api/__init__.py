"""Seat pool HTTP API."""
