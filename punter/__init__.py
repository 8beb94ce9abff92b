"""Bot, match protocol and battle arena for the river-claiming punter game."""

__version__ = "0.1.0"
