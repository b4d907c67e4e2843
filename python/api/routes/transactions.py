"""
Transactions API Routes

Provides endpoints for uploading statements and managing a profile's
transactions, mappings and spending analysis.
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ingestion import ReclassifyScope, TransactionPipeline

from ..dependencies import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profiles/{profile_id}/transactions", tags=["transactions"])


class TransactionUpdate(BaseModel):
    """Edit of one stored transaction."""

    id: str
    category: str | None = None
    name: str | None = None
    description: str | None = None
    possible_duplicate: bool | None = None
    confirm: bool = False
    apply_to_same_name: bool = False


class ReclassifyRequest(BaseModel):
    """Reclassification options."""

    scope: ReclassifyScope = ReclassifyScope.NEEDS_REVIEW
    threshold: float = 0.7


class KeywordMapping(BaseModel):
    """Keyword -> category mapping."""

    keyword: str
    category: str


class TransactionListResponse(BaseModel):
    """Stored transactions of a profile."""

    transactions: list[dict]
    total: int
    needs_review_count: int


def _storage_error(e: SQLAlchemyError) -> HTTPException:
    logger.error(f"Storage error: {e}")
    return HTTPException(status_code=500, detail=f"Storage error: {e}")


async def _read_upload(file: UploadFile, pipeline: TransactionPipeline) -> tuple[str, bytes]:
    content = await file.read()
    valid, message = pipeline.validate_file(file.filename or "", len(content))
    if not valid:
        raise HTTPException(status_code=400, detail=message)
    return file.filename, content


@router.post("/upload")
async def upload_transactions(
    profile_id: str,
    file: UploadFile = File(...),
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Upload one statement file.

    Args:
        profile_id: Profile ID
        file: .xlsx, .xls or .csv statement export
        pipeline: Transaction pipeline

    Returns:
        Upload result with accepted and ambiguous transactions
    """
    upload = await _read_upload(file, pipeline)
    try:
        result = pipeline.upload(profile_id, [upload])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        raise _storage_error(e)
    return result.to_dict()


@router.post("/upload-multiple")
async def upload_multiple(
    profile_id: str,
    files: list[UploadFile] = File(...),
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Upload several statement files; unreadable files are reported, not fatal."""
    uploads = []
    skipped = []
    for file in files:
        content = await file.read()
        valid, message = pipeline.validate_file(file.filename or "", len(content))
        if valid:
            uploads.append((file.filename, content))
        else:
            skipped.append({"fileName": file.filename, "reason": message})

    if not uploads:
        raise HTTPException(status_code=400, detail={"message": "No valid files", "skippedFiles": skipped})

    try:
        result = pipeline.upload(profile_id, uploads, fail_fast=False)
    except SQLAlchemyError as e:
        raise _storage_error(e)

    result.skipped_files = skipped + result.skipped_files
    return result.to_dict()


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    profile_id: str,
    category: str | None = Query(None),
    needs_review: bool | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> TransactionListResponse:
    """List a profile's transactions, newest first.

    Args:
        profile_id: Profile ID
        category: Filter by category
        needs_review: Filter by review flag
        start_date: Filter by start date
        end_date: Filter by end date
        pipeline: Transaction pipeline

    Returns:
        Matching transactions
    """
    try:
        transactions = pipeline.get_transactions(profile_id)
    except SQLAlchemyError as e:
        raise _storage_error(e)

    if category:
        transactions = [t for t in transactions if t.category == category]
    if needs_review is not None:
        transactions = [t for t in transactions if t.needs_review == needs_review]
    if start_date:
        transactions = [t for t in transactions if t.date_value >= start_date]
    if end_date:
        transactions = [t for t in transactions if t.date_value <= end_date]

    return TransactionListResponse(
        transactions=[t.to_dict() for t in transactions],
        total=len(transactions),
        needs_review_count=sum(1 for t in transactions if t.needs_review),
    )


@router.put("")
async def update_transaction(
    profile_id: str,
    update: TransactionUpdate,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Edit a transaction; ``confirm`` also teaches the personal mapping."""
    changes = update.model_dump(
        include={"category", "name", "description", "possible_duplicate"},
        exclude_none=True,
    )
    try:
        updated = pipeline.update_transaction(
            profile_id,
            update.id,
            changes,
            confirm=update.confirm,
            apply_to_same_name=update.apply_to_same_name,
        )
    except KeyError:
        raise HTTPException(status_code=404, detail="Transaction not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        raise _storage_error(e)

    return {"updated": len(updated), "transactions": [t.to_dict() for t in updated]}


@router.delete("")
async def delete_all_transactions(
    profile_id: str,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Delete every transaction of a profile."""
    try:
        deleted = pipeline.delete_all(profile_id)
    except SQLAlchemyError as e:
        raise _storage_error(e)
    return {"deleted": deleted}


@router.get("/analyze")
async def analyze_transactions(
    profile_id: str,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Recurring patterns, spending summary and insights for the lookback window."""
    try:
        return pipeline.analyze_profile(profile_id)
    except SQLAlchemyError as e:
        raise _storage_error(e)


@router.get("/sources")
async def list_sources(
    profile_id: str,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Statements the stored transactions came from."""
    try:
        sources = pipeline.list_sources(profile_id)
    except SQLAlchemyError as e:
        raise _storage_error(e)
    return {"sources": sources, "total": len(sources)}


@router.post("/reclassify")
async def reclassify_transactions(
    profile_id: str,
    request: ReclassifyRequest | None = None,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Re-run the classifier over stored transactions."""
    request = request or ReclassifyRequest()
    try:
        return pipeline.reclassify(profile_id, request.scope, request.threshold)
    except SQLAlchemyError as e:
        raise _storage_error(e)


@router.get("/mappings")
async def get_personal_mappings(
    profile_id: str,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Personal name -> category mappings learned from confirmations."""
    mappings = pipeline.get_personal_mappings(profile_id)
    return {"mappings": mappings, "total": len(mappings)}


@router.delete("/mappings")
async def clear_personal_mappings(
    profile_id: str,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    return {"deleted": pipeline.clear_personal_mappings(profile_id)}


@router.get("/keyword-mappings")
async def get_keyword_mappings(
    profile_id: str,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Global keyword -> category mappings."""
    mappings = pipeline.get_keyword_mappings()
    return {"mappings": mappings, "total": len(mappings)}


@router.post("/keyword-mappings")
async def add_keyword_mapping(
    profile_id: str,
    mapping: KeywordMapping,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    try:
        key = pipeline.add_keyword_mapping(mapping.keyword, mapping.category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"keyword": key, "category": mapping.category}


@router.delete("/keyword-mappings")
async def delete_keyword_mapping(
    profile_id: str,
    keyword: str = Query(...),
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    if not pipeline.delete_keyword_mapping(keyword):
        raise HTTPException(status_code=404, detail="Keyword mapping not found")
    return {"deleted": keyword}


@router.delete("/{transaction_id}")
async def delete_transaction(
    profile_id: str,
    transaction_id: str,
    pipeline: TransactionPipeline = Depends(get_pipeline),
) -> dict:
    """Delete one transaction."""
    try:
        deleted = pipeline.delete_transaction(profile_id, transaction_id)
    except SQLAlchemyError as e:
        raise _storage_error(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"deleted": transaction_id}
