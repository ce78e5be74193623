"""Evidence upload and management routes"""

import uuid

from pydantic import BaseModel, Field
from fastapi import APIRouter, File, UploadFile, status

from disputeflow.adapters.storage import classify_upload, upload_evidence_file
from disputeflow.api.dependencies import CurrentUserId, DBSession, EvidenceStore
from disputeflow.db.models.evidence import Evidence
from disputeflow.disputes import queries
from disputeflow.disputes.evidence import list_evidence
from disputeflow.disputes.phases import EvidenceType
from disputeflow.disputes.unit import require_party

router = APIRouter()


class EvidenceLink(BaseModel):
    url: str = Field(max_length=1000)
    type: EvidenceType
    original_filename: str | None = None


class EvidenceResponse(BaseModel):
    id: str
    dispute_id: str
    uploader_id: str
    uploader_role: str
    url: str
    type: str
    original_filename: str | None
    file_size: int | None
    uploaded_at: str


def _evidence_to_response(e: Evidence) -> EvidenceResponse:
    return EvidenceResponse(
        id=str(e.id),
        dispute_id=str(e.dispute_id),
        uploader_id=str(e.uploader_id),
        uploader_role=e.uploader_role.value,
        url=e.url,
        type=e.type.value,
        original_filename=e.original_filename,
        file_size=e.file_size,
        uploaded_at=e.uploaded_at.isoformat(),
    )


@router.get("/{dispute_id}/evidence", response_model=list[EvidenceResponse])
async def get_evidence(dispute_id: uuid.UUID, user_id: CurrentUserId, db: DBSession):
    dispute = await queries.get_dispute(db, dispute_id)
    require_party(dispute, user_id)
    return [_evidence_to_response(e) for e in await list_evidence(db, dispute_id)]


@router.post(
    "/{dispute_id}/evidence",
    response_model=EvidenceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_evidence(
    dispute_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DBSession,
    store: EvidenceStore,
    file: UploadFile = File(...),
):
    """Upload an evidence file for a dispute, stored in Cloudinary."""
    dispute = await queries.get_dispute(db, dispute_id)
    require_party(dispute, user_id)

    content = await file.read()
    original_filename = file.filename or "unknown"
    evidence_type = classify_upload(file.content_type, len(content))

    upload_result = await upload_evidence_file(
        file_content=content,
        filename=f"{uuid.uuid4()}_{original_filename}",
        dispute_id=str(dispute_id),
        evidence_type=evidence_type,
    )

    evidence = await store.attach(
        dispute_id,
        user_id,
        upload_result["url"],
        evidence_type,
        original_filename=original_filename,
        file_size=len(content),
    )
    return _evidence_to_response(evidence)


@router.post(
    "/{dispute_id}/evidence/link",
    response_model=EvidenceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def link_evidence(
    dispute_id: uuid.UUID,
    data: EvidenceLink,
    user_id: CurrentUserId,
    store: EvidenceStore,
):
    """Attach evidence that is already stored elsewhere."""
    evidence = await store.attach(
        dispute_id,
        user_id,
        data.url,
        data.type,
        original_filename=data.original_filename,
    )
    return _evidence_to_response(evidence)


@router.delete("/{dispute_id}/evidence/{evidence_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_evidence(
    dispute_id: uuid.UUID,
    evidence_id: uuid.UUID,
    user_id: CurrentUserId,
    store: EvidenceStore,
):
    await store.remove(dispute_id, user_id, evidence_id)
