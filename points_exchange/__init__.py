"""Async client and command-line tool for the points-for-coupon exchange backend."""

__version__ = "0.1.0"
