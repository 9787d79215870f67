"""
shared/utils/uploads.py
Validation for user-uploaded images (avatars).
"""

from typing import Optional

from fastapi import HTTPException, status

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
}

# Leading bytes of each accepted format
_SIGNATURES = {
    "jpg": (b"\xff\xd8\xff",),
    "png": (b"\x89PNG",),
    "gif": (b"GIF8",),
}


def sniff_image_type(content: bytes) -> Optional[str]:
    """Return the file extension implied by the magic bytes, or None."""
    for ext, prefixes in _SIGNATURES.items():
        if any(content.startswith(p) for p in prefixes):
            return ext
    return None


def validate_image_upload(content: bytes, content_type: Optional[str], max_bytes: int) -> str:
    """
    Reject anything that isn't a small JPEG/PNG/GIF.
    Returns the extension to store the object under.
    """
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")

    if len(content) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image must be smaller than {max_bytes // (1024 * 1024)}MB",
        )

    declared = ALLOWED_IMAGE_TYPES.get((content_type or "").lower())
    if not declared:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Only JPEG, PNG and GIF images are allowed",
        )

    actual = sniff_image_type(content)
    if actual != declared:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="File content does not match its image type",
        )
    return actual
