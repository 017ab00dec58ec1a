"""API routes for AI generation.

This module provides REST endpoints for:
- POST /api/v1/ai/generate/image - Generate an image (10 credits)
- POST /api/v1/ai/generate/text - Generate text (5 credits)
- GET /api/v1/ai/status/{job_id} - Get a generation job
- GET /api/v1/ai/history - List past generations

Generation endpoints are rate limited per account. A generation whose
provider call fails is refunded before the error response is returned.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import enforce_generation_rate_limit, get_current_account, get_db
from app.api.errors import to_http_exception
from app.models.account import Account
from app.models.generation_job import GenerationJob, GenerationType, JobStatus
from app.schemas.generation import (
    GenerationHistoryResponse,
    GenerationJobResponse,
    GenerationResultResponse,
    ImageGenerationRequest,
    TextGenerationRequest,
)
from app.services.errors import LedgerError
from app.services.generation_service import get_generation_service
from app.services.ledger import get_credit_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai", "generation"])


async def _settle(db: AsyncSession, account_id: str, job: GenerationJob) -> GenerationResultResponse:
    if job.status == JobStatus.FAILED:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": "generation_failed",
                "message": job.error_msg or "Generation failed",
                "job_id": str(job.id),
                "refunded": True,
            },
        )

    balance = await get_credit_ledger(db).get_balance(account_id)
    return GenerationResultResponse(
        generation=GenerationJobResponse.model_validate(job),
        credits_remaining=balance,
    )


@router.post(
    "/generate/image",
    response_model=GenerationResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate an image",
    description="Generate an image from a prompt. Costs 10 credits.",
    dependencies=[Depends(enforce_generation_rate_limit)],
)
async def generate_image(
    request: ImageGenerationRequest,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> GenerationResultResponse:
    """Generate an image.

    Args:
        request: Prompt, style and visibility
        current_account: Authenticated account
        db: Database session

    Returns:
        GenerationResultResponse with the completed job and remaining balance

    Raises:
        HTTPException(402): If the account cannot cover the cost
        HTTPException(429): If the generation rate limit is exceeded
        HTTPException(502): If the provider failed (credits refunded)
    """
    service = get_generation_service(db)
    try:
        job = await service.generate(
            current_account.id,
            GenerationType.IMAGE,
            request.prompt,
            style=request.style,
            is_public=request.is_public,
        )
    except LedgerError as e:
        raise to_http_exception(e)

    return await _settle(db, current_account.id, job)


@router.post(
    "/generate/text",
    response_model=GenerationResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate text",
    description="Generate text from a prompt. Costs 5 credits.",
    dependencies=[Depends(enforce_generation_rate_limit)],
)
async def generate_text(
    request: TextGenerationRequest,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> GenerationResultResponse:
    """Generate text with the requested provider."""
    service = get_generation_service(db)
    try:
        job = await service.generate(
            current_account.id,
            GenerationType.TEXT,
            request.prompt,
            provider=request.provider,
            is_public=request.is_public,
        )
    except LedgerError as e:
        raise to_http_exception(e)

    return await _settle(db, current_account.id, job)


@router.get(
    "/status/{job_id}",
    response_model=GenerationJobResponse,
    summary="Get generation status",
    description="Get a generation job owned by the authenticated account",
)
async def get_status(
    job_id: UUID,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> GenerationJobResponse:
    """Get a generation job.

    Raises:
        HTTPException(404): If the job does not exist or belongs to another account
    """
    try:
        job = await get_generation_service(db).get_job(current_account.id, job_id)
    except LedgerError as e:
        raise to_http_exception(e)
    return GenerationJobResponse.model_validate(job)


@router.get(
    "/history",
    response_model=GenerationHistoryResponse,
    summary="List generations",
    description="Get paginated generation history for the authenticated account",
)
async def get_history(
    generation_type: Optional[GenerationType] = Query(
        default=None,
        alias="type",
        description="Filter by generation type",
    ),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> GenerationHistoryResponse:
    """List past generations, newest first."""
    jobs, total = await get_generation_service(db).list_history(
        current_account.id,
        limit=limit,
        offset=offset,
        generation_type=generation_type,
    )
    return GenerationHistoryResponse(
        jobs=[GenerationJobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
