"""Building blocks for a forwarding DNS proxy: DNS64, ECS, request context, rate limiting and wire helpers."""

__version__ = "0.1.0"