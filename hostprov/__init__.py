"""
hostprov — declarative, idempotent application-server provisioning.
"""

__version__ = "0.1.0"
