"""
Infrastructure
==============

Adapters to external systems: database, OpenAI, arq task queue and the
rate limit counter stores.
"""
