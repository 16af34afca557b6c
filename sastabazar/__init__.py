"""sastabazar payments: order intents, payment verification and webhook reconciliation."""

__version__ = "1.0.0"
