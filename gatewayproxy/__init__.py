"""Proxy pipeline building blocks for API gateways: contexts, requests, merging, shadowing, static data and modifiers."""

__version__ = "0.1.0"