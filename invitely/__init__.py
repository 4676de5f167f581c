"""Invitely: event authoring wizard, guest RSVPs and live attendance."""

__version__ = "0.1.0"
