"""CloudRecon backend: credential-driven cloud reconnaissance task engine."""

__version__ = "0.1.0"
