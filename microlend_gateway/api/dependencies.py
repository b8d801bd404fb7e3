"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from microlend_gateway.infrastructure.cache.client import CacheClient, get_cache
from microlend_gateway.infrastructure.database.session import get_db
from microlend_gateway.services.issuance import LoanIssuanceOrchestrator
from microlend_gateway.services.score_updates import ScoreUpdatePipeline


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_issuance_orchestrator(
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
) -> LoanIssuanceOrchestrator:
    """Provide a request-scoped issuance orchestrator"""
    return LoanIssuanceOrchestrator(db, cache)


def get_score_pipeline(
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
) -> ScoreUpdatePipeline:
    """Provide a request-scoped score update pipeline"""
    return ScoreUpdatePipeline(db, cache)
