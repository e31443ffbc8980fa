"""Student signup module."""
