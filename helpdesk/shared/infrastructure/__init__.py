"""
Shared Infrastructure
=====================

Low-level technical concerns shared by every module:
- Structured logging setup (JSON formatter, latency timing)
"""
