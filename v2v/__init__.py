"""Video-to-video relay: submit a Runway generation, poll it to completion, serve the result."""

__version__ = "0.3.0"
