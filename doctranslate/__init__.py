"""
doctranslate - multi-visitor document translation service
"""

__version__ = "1.0.0"
