"""
Authentication support for the School API.

Token issuance lives in the upstream auth service; this package only keeps
the Redis-backed failed-login counters that drive temporary lockouts.
"""
