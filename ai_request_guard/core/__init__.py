"""
Core modules for AI Request Guard.

This package contains admission control, backoff, usage monitoring,
stream decoding, the fallback cascade and the request orchestrator.
"""
