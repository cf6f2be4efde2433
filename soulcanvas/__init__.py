"""SoulCanvas: resilient sketch-to-image generation client.

Turns a hand-drawn sketch plus a style description into a generated image URL,
failing over across several interchangeable image backends.
"""

__version__ = "1.0.0"
