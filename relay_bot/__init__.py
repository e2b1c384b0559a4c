"""Telegram bot that relays chat messages to a configured AI backend."""

__version__ = "0.1.0"
