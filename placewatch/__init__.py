"""
Placewatch
==========

Syncs Google reviews for one or more places into PostgreSQL and reports
new reviews to Telegram.
"""

__version__ = "1.0.0"
