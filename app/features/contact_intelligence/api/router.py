"""
Contact intelligence routes: semantic search, reranking, query expansion,
rules-based and AI grouping, job polling and usage reporting.

Pipeline errors carry their own HTTP status (see domain.errors); routes
translate them into HTTPException with the error's JSON detail.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.auth.verify import auth_dependency
from app.config import settings
from app.db.helpers import DatabaseError
from app.features.contact_intelligence.api.schemas import (
    AIGroupingRequest,
    AIGroupingStartResponse,
    CacheClearResponse,
    ExpandQueryRequest,
    ExpandQueryResponse,
    RerankRequest,
    RerankResponse,
    RulesGroupingRequest,
    SearchRequest,
    SearchResponse,
)
from app.features.contact_intelligence.domain.errors import (
    ContactIntelligenceError,
    FeatureGateError,
    ValidationError,
)
from app.features.contact_intelligence.domain.models import Contact, SearchHit
from app.features.contact_intelligence.domain.pricing import grouping_feature_estimate
from app.features.contact_intelligence.domain.subscriptions import (
    Feature,
    RunType,
    has_feature,
    required_tier,
)
from app.features.contact_intelligence.jobs import job_queue, job_status_payload
from app.features.contact_intelligence.repository import JobRepository
from app.features.contact_intelligence.services import (
    query_expansion_service,
    rules_grouping_service,
    semantic_search_service,
)
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.features.contact_intelligence.services.rerank_service import rerank_service
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limit_dependencies import rate_limit_search, rate_limit_user

logger = get_logger(__name__)

router = APIRouter(prefix="/contacts", tags=["contacts"])


def _require_user(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user token")
    return user_id


def _to_http(error: Exception, operation: str, user_id: str | None = None) -> HTTPException:
    """Translate a pipeline/persistence error into the response the client sees."""
    if isinstance(error, ContactIntelligenceError):
        log = logger.warning if error.status_code < 500 else logger.error
        log(
            f"{operation} rejected",
            user_id=user_id,
            error=error.message,
            error_code=error.error_code,
        )
        return HTTPException(status_code=error.status_code, detail=error.to_detail())

    if isinstance(error, DatabaseError):
        logger.error(f"{operation} database error", user_id=user_id, error=str(error))
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "storage_unavailable", "message": "Please try again shortly"},
        )

    logger.error(
        f"{operation} failed", user_id=user_id, error=str(error), error_type=type(error).__name__
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "internal_error", "message": f"{operation} failed"},
    )


@router.post("/search", response_model=SearchResponse)
async def search_contacts(
    body: SearchRequest,
    request: Request,
    claims: dict = Depends(auth_dependency),
    _rate: None = Depends(rate_limit_user),
    _search_rate: None = Depends(rate_limit_search),
):
    """Expand the query, retrieve candidates by vector similarity and rerank them."""
    user_id = _require_user(claims)

    try:
        result = await semantic_search_service.search(user_id, body.query, body.to_options())
    except Exception as e:
        raise _to_http(e, "Contact search", user_id) from e

    return result.to_dict()


@router.post("/rerank", response_model=RerankResponse)
async def rerank_contacts(
    body: RerankRequest,
    request: Request,
    claims: dict = Depends(auth_dependency),
    _rate: None = Depends(rate_limit_user),
    _search_rate: None = Depends(rate_limit_search),
):
    """Rerank a candidate set the client already retrieved."""
    user_id = _require_user(claims)

    try:
        hits = []
        for position, item in enumerate(body.contacts, start=1):
            if not item.contact.get("id"):
                raise ValidationError(f"Contact #{position} has no id", field="contacts")
            hits.append(
                SearchHit(
                    contact=Contact.from_dict(item.contact),
                    vector_score=item.vector_score,
                    original_vector_rank=position,
                )
            )

        result = await rerank_service.rerank(user_id, body.query, hits, body.options.to_options())
    except Exception as e:
        raise _to_http(e, "Rerank", user_id) from e

    return {"results": [hit.to_dict() for hit in result.hits], "metadata": result.metadata()}


@router.post("/expand-query", response_model=ExpandQueryResponse)
async def expand_query(
    body: ExpandQueryRequest,
    request: Request,
    claims: dict = Depends(auth_dependency),
    _rate: None = Depends(rate_limit_user),
    _search_rate: None = Depends(rate_limit_search),
):
    """Return the enhanced form of a query without running the search."""
    user_id = _require_user(claims)

    try:
        expanded = await query_expansion_service.expand(
            body.query, user_id=user_id, language_hint=body.language_hint
        )
    except Exception as e:
        raise _to_http(e, "Query expansion", user_id) from e

    return expanded.to_dict()


@router.post("/groups/rules")
async def generate_rules_groups(
    body: RulesGroupingRequest,
    request: Request,
    claims: dict = Depends(auth_dependency),
    _rate: None = Depends(rate_limit_user),
):
    """Group contacts by company, time, location and events without any paid call."""
    user_id = _require_user(claims)

    try:
        result = await rules_grouping_service.generate(user_id, body.to_options())
    except Exception as e:
        raise _to_http(e, "Rules grouping", user_id) from e

    return result.to_dict()


@router.post(
    "/groups/ai",
    response_model=AIGroupingStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_ai_grouping(
    request: Request,
    body: AIGroupingRequest | None = None,
    claims: dict = Depends(auth_dependency),
    _rate: None = Depends(rate_limit_user),
    _search_rate: None = Depends(rate_limit_search),
):
    """
    Queue an AI grouping job and return its id immediately.

    The plan and the cheapest possible AI call are checked up front so an
    unaffordable request is answered with 402 instead of a failed job.
    """
    user_id = _require_user(claims)
    body = body or AIGroupingRequest()

    try:
        tier = await budget_gate.get_tier(user_id)
        if not has_feature(tier, Feature.AI_GROUPING):
            raise FeatureGateError(
                Feature.AI_GROUPING.value, tier.value, required_tier(Feature.AI_GROUPING).value
            )

        estimated_cost = grouping_feature_estimate(
            settings.OPENAI_GROUPING_MODEL, settings.AI_GROUPING_MIN_CONTACTS
        )
        await budget_gate.require(user_id, estimated_cost, required_runs=1, run_type=RunType.AI)

        job = await job_queue.start(user_id, body.to_options())
    except Exception as e:
        raise _to_http(e, "AI grouping", user_id) from e

    # The job is already queued; a warnings lookup failure must not hide its id
    try:
        warnings = await budget_gate.check_usage_warnings(user_id)
    except Exception as e:
        logger.warning("Usage warnings unavailable", user_id=user_id, error=str(e))
        warnings = []

    return {"job_id": job.id, "status": job.status.value, "warnings": warnings}


@router.get("/jobs/{job_id}")
async def get_job_status(
    job_id: str,
    request: Request,
    claims: dict = Depends(auth_dependency),
):
    """Poll a grouping job. Jobs belonging to other users are reported as missing."""
    user_id = _require_user(claims)

    try:
        job = await JobRepository.get(job_id, user_id=user_id)
    except Exception as e:
        raise _to_http(e, "Job lookup", user_id) from e

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "job_not_found", "message": f"Job {job_id} not found"},
        )
    return job_status_payload(job)


@router.get("/usage")
async def get_usage(
    request: Request,
    claims: dict = Depends(auth_dependency),
    _rate: None = Depends(rate_limit_user),
):
    """This month's spend and runs against the plan limits, plus any warnings."""
    user_id = _require_user(claims)

    try:
        summary = await budget_gate.get_usage_summary(user_id)
        warnings = await budget_gate.check_usage_warnings(user_id)
    except Exception as e:
        raise _to_http(e, "Usage summary", user_id) from e

    return {**summary, "warnings": warnings}


@router.delete("/cache/expansions", response_model=CacheClearResponse)
async def clear_expansion_cache(
    request: Request,
    claims: dict = Depends(auth_dependency),
    _rate: None = Depends(rate_limit_user),
):
    """Drop every cached LLM query expansion. The cache is shared, so only admins may clear it."""
    user_id = _require_user(claims)
    if user_id not in settings.ADMIN_USER_IDS:
        logger.warning("Expansion cache clear refused", user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Clearing the expansion cache requires an admin account"},
        )

    deleted = await query_expansion_service.clear_cache()
    logger.info("Expansion cache cleared", user_id=user_id, deleted=deleted)
    return {"deleted": deleted}
