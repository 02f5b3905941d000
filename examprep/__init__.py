"""
Assessment session engine for exam-preparation packages.
"""
__version__ = "1.0.0"
