from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from kbchat.schemas.rag import DocumentCreateRequest, DocumentCreateResponse
from kbchat.services.retrieval_service import (
    RetrievalError,
    RetrievalService,
    get_retrieval_service,
)

router = APIRouter(prefix="/api/kb", tags=["kb"])


@router.post(
    "/documents",
    response_model=DocumentCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_document(
    payload: DocumentCreateRequest,
    retrieval_service: RetrievalService = Depends(get_retrieval_service),
) -> DocumentCreateResponse:
    """Embed and store one knowledge-base document."""

    content = payload.content.strip()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Document content must not be empty.",
        )
    try:
        document_id = await retrieval_service.index_document(
            doc_type=payload.doc_type.strip(),
            content=content,
            metadata=payload.metadata,
        )
    except RetrievalError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return DocumentCreateResponse(id=document_id)
