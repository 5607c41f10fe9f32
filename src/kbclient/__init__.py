"""kbclient - authenticated session manager and HTTP pipeline for the KB marketplace app."""

__version__ = "0.1.0"
