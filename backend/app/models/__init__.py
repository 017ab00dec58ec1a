"""SQLAlchemy models for Legion."""

from app.models.account import Account
from app.models.balance_snapshot import BalanceSnapshot
from app.models.credit_transaction import (
    ALLOWED_TRANSITIONS,
    CreditTransaction,
    TransactionStatus,
)
from app.models.generation_job import GenerationJob, GenerationType, JobStatus
from app.models.social import Follow, Like, Post, Visibility

__all__ = [
    "Account",
    "BalanceSnapshot",
    "CreditTransaction",
    "TransactionStatus",
    "ALLOWED_TRANSITIONS",
    "GenerationJob",
    "GenerationType",
    "JobStatus",
    "Post",
    "Like",
    "Follow",
    "Visibility",
]
