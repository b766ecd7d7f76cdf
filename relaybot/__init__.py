"""relaybot - chat bot that relays requests to a single external reasoning process."""

__version__ = "0.1.0"
