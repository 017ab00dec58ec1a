"""Generation orchestration on top of the credit ledger.

A generation is paid for before it runs. The debit, its transaction row
and a processing job row commit together; the provider is then invoked
under a timeout, and any failure after that commit is compensated by a
refund. A refund that cannot be applied is logged at critical and raised
as RefundFailedError.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.credit_transaction import TransactionStatus
from app.models.generation_job import GenerationJob, GenerationType, JobStatus
from app.services.ai_provider import (
    DEFAULT_TEXT_PROVIDER,
    AIProviderClient,
    ProviderResult,
    get_ai_provider,
)
from app.services.errors import (
    InsufficientBalanceError,
    NotFoundError,
    RefundFailedError,
    ValidationError,
)
from app.services.ledger import CreditLedger

logger = logging.getLogger(__name__)

CREDIT_COSTS: dict[GenerationType, int] = {
    GenerationType.IMAGE: 10,
    GenerationType.VIDEO: 50,
    GenerationType.TEXT: 5,
}

# No provider is wired up for video yet; requests are rejected before any debit.
SUPPORTED_TYPES = frozenset({GenerationType.IMAGE, GenerationType.TEXT})


class GenerationService:
    """Service for running paid AI generations."""

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[AIProviderClient] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the generation service.

        Args:
            db: Database session
            provider: AI provider client (defaults to the shared client)
            timeout: Provider timeout in seconds
        """
        self.db = db
        self.ledger = CreditLedger(db)
        self.provider = provider or get_ai_provider()
        self.timeout = timeout or settings.AI_PROVIDER_TIMEOUT_SECONDS

    async def generate(
        self,
        account_id: str,
        generation_type: GenerationType,
        prompt: str,
        provider: Optional[str] = None,
        style: Optional[str] = None,
        is_public: bool = True,
    ) -> GenerationJob:
        """Debit, invoke the provider, and record the outcome.

        Args:
            account_id: Paying account
            generation_type: Kind of generation
            prompt: Validated prompt
            provider: Text provider key (text generations)
            style: Image style (image generations)
            is_public: Whether the result may appear in public feeds

        Returns:
            The GenerationJob in a terminal state. A failed job has already
            been refunded.

        Raises:
            ValidationError: If the generation type is not available
            InsufficientBalanceError: If the account cannot cover the cost
            RefundFailedError: If a failed job could not be refunded
        """
        if generation_type not in SUPPORTED_TYPES:
            raise ValidationError(f"{generation_type.value} generation is not available")

        cost = CREDIT_COSTS[generation_type]

        if not await self.ledger.has_sufficient_balance(account_id, cost):
            raise InsufficientBalanceError(account_id=account_id, required=cost)

        # The debit, its transaction and the processing job commit together:
        # either all of them exist or none do.
        try:
            new_balance = await self.ledger.debit(account_id, cost, commit=False)
            debit_tx = await self.ledger.record_transaction(
                account_id,
                -cost,
                TransactionStatus.COMPLETED,
                metadata={"reason": "generation", "generation_type": generation_type.value},
                commit=False,
            )
            job = GenerationJob(
                account_id=account_id,
                prompt=prompt,
                generation_type=generation_type,
                provider=provider if generation_type == GenerationType.TEXT else style,
                credits_cost=cost,
                status=JobStatus.PROCESSING,
                is_public=is_public,
            )
            self.db.add(job)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        job_id = job.id
        await self.ledger.record_snapshot(
            account_id,
            debit_tx.id,
            new_balance + cost,
            new_balance,
            f"generation_{generation_type.value}",
        )

        try:
            result = await self._invoke(generation_type, prompt, provider, style)

            if result.success:
                job.status = JobStatus.COMPLETED
                job.result_url = result.output
                job.completed_at = datetime.now(timezone.utc)
                await self.db.commit()
                logger.info(
                    f"Generation job {job_id} completed for account {account_id} "
                    f"({generation_type.value}, {cost} credits)"
                )
                return job

        except Exception as e:
            logger.error(
                f"Generation for account {account_id} failed after debit: {e}", exc_info=True
            )
            await self.db.rollback()
            await self._fail_and_refund(account_id, job_id, cost, "Internal error")
            raise

        logger.warning(f"Generation job {job_id} failed: {result.error}")
        await self._fail_and_refund(account_id, job_id, cost, result.error or "Generation failed")
        await self.db.refresh(job)
        return job

    async def _invoke(
        self,
        generation_type: GenerationType,
        prompt: str,
        provider: Optional[str],
        style: Optional[str],
    ) -> ProviderResult:
        """Call the provider under the configured timeout.

        A timeout is reported as a failed ProviderResult.
        """
        if generation_type == GenerationType.IMAGE:
            call = self.provider.generate_image(prompt, style or "realistic")
        else:
            call = self.provider.generate_text(prompt, provider or DEFAULT_TEXT_PROVIDER)

        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            return ProviderResult(
                success=False, error=f"Provider timed out after {self.timeout:g}s"
            )

    async def _fail_and_refund(
        self,
        account_id: str,
        job_id: UUID,
        cost: int,
        error: str,
    ) -> bool:
        """Mark a job failed and credit its cost back.

        The job is moved out of processing with a conditional UPDATE so a
        job is refunded at most once, even if the stale-job sweep races the
        request that owns it. The status change, the credit and the refund
        transaction commit together; if any of them fails the job stays in
        processing for the sweep to retry.

        Returns:
            True if a refund was applied, False if the job was already terminal

        Raises:
            RefundFailedError: If the credit could not be applied
        """
        stmt = (
            update(GenerationJob)
            .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PROCESSING)
            .values(
                status=JobStatus.FAILED,
                error_msg=error,
                completed_at=datetime.now(timezone.utc),
            )
            .returning(GenerationJob.id)
        )

        try:
            claimed = (await self.db.execute(stmt)).scalar_one_or_none()
            if claimed is None:
                await self.db.rollback()
                return False

            new_balance = await self.ledger.credit(account_id, cost, commit=False)
            refund_tx = await self.ledger.record_transaction(
                account_id,
                cost,
                TransactionStatus.COMPLETED,
                metadata={"reason": "generation_refund", "job_id": str(job_id)},
                commit=False,
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.critical(
                f"REFUND FAILED: {cost} credits owed to account {account_id} "
                f"for job {job_id}",
                exc_info=True,
            )
            raise RefundFailedError(
                account_id=account_id,
                amount=cost,
                job_id=str(job_id),
            ) from e

        await self.ledger.record_snapshot(
            account_id, refund_tx.id, new_balance - cost, new_balance, "generation_refund"
        )
        logger.info(f"Refunded {cost} credits to account {account_id} for job {job_id}")
        return True

    async def get_job(self, account_id: str, job_id: UUID) -> GenerationJob:
        """Get a job owned by the account.

        Raises:
            NotFoundError: If the job does not exist or belongs to someone else
        """
        stmt = select(GenerationJob).where(
            GenerationJob.id == job_id,
            GenerationJob.account_id == account_id,
        )
        result = await self.db.execute(stmt)
        job = result.scalar_one_or_none()
        if job is None:
            raise NotFoundError(f"Generation job {job_id} not found")
        return job

    async def list_history(
        self,
        account_id: str,
        limit: int = 20,
        offset: int = 0,
        generation_type: Optional[GenerationType] = None,
    ) -> tuple[list[GenerationJob], int]:
        """List an account's generations, newest first."""
        base_query = select(GenerationJob).where(GenerationJob.account_id == account_id)
        if generation_type:
            base_query = base_query.where(GenerationJob.generation_type == generation_type)

        total = await self.db.scalar(select(func.count()).select_from(base_query.subquery())) or 0

        result = await self.db.execute(
            base_query.order_by(GenerationJob.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def fail_stale_jobs(self, older_than: timedelta) -> int:
        """Fail and refund jobs stuck in processing.

        A job whose refund cannot be applied is logged at critical and
        skipped so the rest of the sweep still runs.

        Args:
            older_than: Age after which a processing job is considered lost

        Returns:
            Number of jobs refunded
        """
        cutoff = datetime.now(timezone.utc) - older_than
        result = await self.db.execute(
            select(GenerationJob.id, GenerationJob.account_id, GenerationJob.credits_cost).where(
                GenerationJob.status == JobStatus.PROCESSING,
                GenerationJob.created_at < cutoff,
            )
        )
        stale = result.all()

        refunded = 0
        for job_id, account_id, cost in stale:
            try:
                if await self._fail_and_refund(
                    account_id, job_id, cost, "Generation did not complete in time"
                ):
                    refunded += 1
            except RefundFailedError:
                continue

        if stale:
            logger.info(f"Stale generation sweep: {refunded}/{len(stale)} jobs refunded")
        return refunded


def get_generation_service(db: AsyncSession) -> GenerationService:
    """Factory function to create GenerationService.

    Args:
        db: Database session

    Returns:
        Configured GenerationService instance
    """
    return GenerationService(db)
