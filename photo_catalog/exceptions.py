"""
Custom exception hierarchy for the photo catalog.

Per-file inference problems never surface as exceptions; these types cover
the failures that callers are expected to see and handle.
"""


class PhotoCatalogError(Exception):
    """Base exception for all photo catalog errors."""
    pass


class FileOperationError(PhotoCatalogError):
    """Raised when a store/move/delete on disk fails."""
    pass


class PathTraversalError(FileOperationError):
    """Raised when a relative path tries to escape the storage root."""
    pass


class MetadataExtractionError(PhotoCatalogError):
    """Raised when metadata cannot be extracted from a file."""
    pass


class DatabaseError(PhotoCatalogError):
    """Raised when database operations fail."""
    pass


class RecordNotFoundError(PhotoCatalogError):
    """Raised when a record does not exist or belongs to another owner."""
    pass


class OwnerNotFoundError(PhotoCatalogError):
    """Raised when no owner matches the given login or id."""
    pass
