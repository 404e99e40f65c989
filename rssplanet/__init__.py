"""
RSS THE PLANET - an authenticated gateway that lets old feed readers,
podcast clients and browsers reach modern RSS, Atom, OPML, web pages and
media through plain proxy URLs.
"""

__version__ = "1.0.0"
