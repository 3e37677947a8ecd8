"""chatbridge: streaming Gemini conversations over an external transport bridge."""

__version__ = "0.1.0"
