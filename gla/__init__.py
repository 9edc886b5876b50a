"""GLA — Git Learning Assistant."""

__version__ = "0.1.0"
