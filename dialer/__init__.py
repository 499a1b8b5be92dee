"""dialer: periodic availability monitor for HTTP endpoints and pingable hosts."""

__version__ = "0.1.0"
