"""Cloudinary storage for dispute evidence files."""

import cloudinary
import cloudinary.uploader
from io import BytesIO

from disputeflow.config import settings
from disputeflow.core.exceptions import ExternalServiceError, ValidationError
from disputeflow.core.logging import log
from disputeflow.disputes.phases import EvidenceType

ACCEPTED_TYPES: dict[str, EvidenceType] = {
    "image/jpeg": EvidenceType.IMAGE,
    "image/png": EvidenceType.IMAGE,
    "image/webp": EvidenceType.IMAGE,
    "application/pdf": EvidenceType.DOCUMENT,
    "video/mp4": EvidenceType.VIDEO,
    "video/webm": EvidenceType.VIDEO,
}


def classify_upload(content_type: str | None, size: int) -> EvidenceType:
    """Map an upload's MIME type to an evidence type, enforcing the size cap."""
    max_bytes = settings.get("EVIDENCE_MAX_BYTES", 10 * 1024 * 1024)
    if size > max_bytes:
        raise ValidationError(
            f"Evidence file exceeds {max_bytes // (1024 * 1024)} MB",
            details={"size": size, "max_bytes": max_bytes},
        )
    evidence_type = ACCEPTED_TYPES.get((content_type or "").lower())
    if evidence_type is None:
        raise ValidationError(
            f"Unsupported evidence type: {content_type}",
            details={"accepted": sorted(ACCEPTED_TYPES)},
        )
    return evidence_type


def _configure():
    """Configure cloudinary from settings."""
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )


async def upload_evidence_file(
    file_content: bytes,
    filename: str,
    dispute_id: str,
    evidence_type: EvidenceType,
) -> dict:
    """Upload an evidence file and return its URL + metadata.

    Returns:
        dict with keys: url, public_id, resource_type, bytes
    """
    _configure()

    # Documents go up as "raw"; "auto" serves PDFs with auth errors
    resource_type = "raw" if evidence_type is EvidenceType.DOCUMENT else evidence_type.value
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename

    try:
        result = cloudinary.uploader.upload(
            BytesIO(file_content),
            folder=f"disputeflow/disputes/{dispute_id}",
            public_id=stem,
            resource_type=resource_type,
            overwrite=False,
            unique_filename=True,
            access_mode="authenticated",
        )
    except Exception as e:
        log.error(f"Cloudinary upload failed: {e}")
        raise ExternalServiceError("Evidence storage", str(e)) from e

    upload_result = {
        "url": result["secure_url"],
        "public_id": result["public_id"],
        "resource_type": result["resource_type"],
        "bytes": result["bytes"],
    }
    log.info(f"Uploaded evidence to Cloudinary: {upload_result['public_id']}")
    return upload_result
