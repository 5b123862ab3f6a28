"""Order fulfillment service: orders, stock reservation, payment and compensation."""

__version__ = "0.1.0"
