"""
Database models for the Hacienda document broker
"""

from .document import Document, DocumentSubmission, DocumentEvent
from .certificate import Certificate

__all__ = [
    "Document",
    "DocumentSubmission",
    "DocumentEvent",
    "Certificate",
]
