"""
mailsweep - batch cleanup of old Gmail conversations
"""

__version__ = "0.1.0"
