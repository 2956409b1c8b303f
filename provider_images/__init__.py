"""Provider image classification and hero selection."""

__version__ = "0.1.0"
