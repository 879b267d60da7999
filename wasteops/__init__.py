"""wasteops: authorization core of the waste-collection back office."""

__version__ = "0.1.0"
