"""Provider/token routing and fallback core for the math solver bot."""

__version__ = "0.1.0"
