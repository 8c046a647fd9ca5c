"""Workforce spreadsheet bulk importer.

Reader -> Normalizer -> Validator -> Conflict Detector -> Resolution Applier.
"""

__version__ = "0.1.0"
