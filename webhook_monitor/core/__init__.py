"""
Core modules for Webhook Monitor.

This package contains the statistics helpers and the background
health prober that feed the request ledger.
"""
