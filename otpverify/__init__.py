"""
Email one-time-code verification service
"""
__version__ = "0.1.0"
