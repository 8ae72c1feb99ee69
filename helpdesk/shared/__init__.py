"""
Shared Kernel Module
====================

Generic infrastructure (logging, HTTP middleware) used by the tickets module,
the bulk classification command and the queue worker.

DO NOT add ticket business logic to the shared kernel.
"""

__version__ = "1.0.0"
