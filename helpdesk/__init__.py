"""
Helpdesk
========

Support ticket service with rate-limited AI classification.
"""

__version__ = "1.0.0"
