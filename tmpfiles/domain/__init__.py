"""
Domain Layer

Pure domain model for temporary file storage. No infrastructure imports.
"""
