"""
dbstack - Build, publish, deploy and operate a hardened PostgreSQL 11 stack
"""

__version__ = "0.3.0"

from .core import PostgresStack, StackError

__all__ = ["PostgresStack", "StackError"]
