"""
Rate limiting package for the School API.

Holds the Redis-backed fixed-window limiter and its middleware. Limits
fail open: without Redis every request is allowed.
"""
