"""
Shared utilities: rate limiting, retries, webhook signatures and field mapping.
"""
