"""
Meeting follow-up pipeline: recording -> transcript -> action items -> notifications.
"""
__version__ = "0.1.0"
