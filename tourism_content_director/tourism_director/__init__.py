"""Tourism Content Director: autonomous AI content generation for locations, experiences and plans."""

__version__ = "0.1.0"
