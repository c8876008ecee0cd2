"""Storefront behavioral analytics and adaptive recommendation engine.

Turns storefront interaction events into a behavioral signature, an intent
state, ranked friction insights and concrete UI fix recommendations, and runs
a feedback loop that learns which fixes are trusted enough to auto-apply.
"""
import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
