"""HTTP test server emulating an unreliable upstream for load-testing clients."""

__version__ = "0.1.0"
