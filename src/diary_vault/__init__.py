"""
Diary Vault - password-protected, locally encrypted diary.
"""

__version__ = "0.1.0"
