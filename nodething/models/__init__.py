"""Models package"""

from .documents import CommandDocument, PropertyDocument, completion_fields, utcnow

__all__ = ['CommandDocument', 'PropertyDocument', 'completion_fields', 'utcnow']
