"""
Core package for shared utilities.

Configuration, structured logging, token verification and rate limiting
shared by the API and service layers.
"""
