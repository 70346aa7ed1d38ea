"""Seat pool inventory and subscription renewal core."""
