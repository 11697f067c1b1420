"""Clinical submission validation, merge and dictionary migration services."""

__version__ = "1.0.0"
