"""
trackerflow: derived-value computation core for declarative trackers.

Evaluates expression rules, validates and calculates grid fields, and
resolves dynamic select options from grid data or sandboxed HTTP sources.
"""

__version__ = "0.1.0"
