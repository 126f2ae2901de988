"""mailmirror: multi-account IMAP mirror with live updates."""

__version__ = "0.1.0"
