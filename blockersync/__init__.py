# blockersync/__init__.py
"""
Keep several calendars aware of each other's busy time by mirroring every
appointment as an ``O_o`` blocker on every other tracked calendar.
"""

__version__ = "0.3.0"
