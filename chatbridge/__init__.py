"""chatbridge - WhatsApp to Discord relay with reply correlation."""

__version__ = "0.1.0"
