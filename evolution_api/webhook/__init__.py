"""Inbound side: webhook normalization, events, handlers and processing."""
