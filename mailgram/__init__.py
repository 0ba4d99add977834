"""Forward IMAP mail for selected recipients to a Telegram channel."""

__version__ = "0.1.0"
