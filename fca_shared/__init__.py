"""Shared package for the facility condition assessment sync backend.

This package holds the framework-free pieces used by the Flask backend:

- Database models (models.py) - SQLAlchemy declarative models for projects,
  assessments, photos, deficiencies, change history and sync receipts
- Enums (enums.py) - status values, severities and conflict policies
- Schemas (schemas.py) - Pydantic request/response models for offline sync
- Validation utilities (validation.py) - input validation and sanitization
- Utility functions (utils.py) - photo decoding, hashing and thumbnailing
"""
