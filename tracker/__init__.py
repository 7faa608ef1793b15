"""tracker-data: periodic sync of rates, prices and sentiment into a local register."""

__version__ = "0.1.0"
