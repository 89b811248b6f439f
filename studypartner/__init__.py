"""
StudyPartner - Conversational tutoring intelligence core.
Decides how the assistant answers each student message: intent, adaptive
response shape, model routing and answer caching.
"""

__version__ = "0.1.0"
