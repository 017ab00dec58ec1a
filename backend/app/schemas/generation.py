"""Pydantic schemas for AI generation endpoints."""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.generation_job import GenerationType, JobStatus

ImageStyle = Literal["realistic", "anime", "abstract"]
TextProvider = Literal["openai", "gemini", "gptMini"]


class ImageGenerationRequest(BaseModel):
    """Request body for POST /ai/generate/image."""

    prompt: str = Field(
        min_length=3,
        max_length=500,
        pattern=r"^[a-zA-Z0-9\s,.-]+$",
        description="Image prompt (letters, digits, spaces, commas, periods, hyphens)",
    )
    style: ImageStyle = Field(description="Rendering style")
    is_public: bool = Field(default=True, description="Show the result in public feeds")


class TextGenerationRequest(BaseModel):
    """Request body for POST /ai/generate/text."""

    prompt: str = Field(min_length=3, max_length=2000, description="Text prompt")
    provider: TextProvider = Field(default="gemini", description="Text model provider")
    is_public: bool = Field(default=True, description="Show the result in public feeds")


class GenerationJobResponse(BaseModel):
    """Generation job as returned by status and history endpoints."""

    id: UUID = Field(..., description="Job ID")
    prompt: str = Field(..., description="Prompt as submitted")
    generation_type: GenerationType = Field(..., description="Kind of generation")
    status: JobStatus = Field(..., description="Current job status")
    result_url: Optional[str] = Field(None, description="Data URL or generated text")
    credits_cost: int = Field(..., description="Credits charged")
    is_public: bool = Field(..., description="Public visibility")
    error_msg: Optional[str] = Field(None, description="Failure reason (if failed)")
    created_at: datetime = Field(..., description="Job creation timestamp")
    completed_at: Optional[datetime] = Field(None, description="Job completion timestamp")

    class Config:
        from_attributes = True


class GenerationResultResponse(BaseModel):
    """Response for a generation request."""

    generation: GenerationJobResponse
    credits_remaining: int = Field(..., description="Balance after the generation settled")


class GenerationHistoryResponse(BaseModel):
    """Paginated generation history."""

    jobs: list[GenerationJobResponse] = Field(..., description="List of jobs")
    total: int = Field(..., description="Total number of jobs matching filter")
    limit: int = Field(..., description="Page size limit")
    offset: int = Field(..., description="Page offset")
