"""Outbound side: connections, rate limiting and the HTTP client."""
