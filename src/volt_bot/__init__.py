"""Cable quotation, stock and metal price assistant."""

__version__ = "0.1.0"
