"""Contract revision and signing REST API routes.

Routes:
    POST   /api/v1/negotiations/{id}/contracts/revisions                  — Submit a revision
    GET    /api/v1/negotiations/{id}/contracts/revisions                  — List revisions
    GET    /api/v1/negotiations/{id}/contracts/revisions/compare          — Clause diff
    POST   /api/v1/negotiations/{id}/contracts/revisions/{rev}/status     — Review status
    POST   /api/v1/negotiations/{id}/contracts/revisions/{rev}/comments   — Comment
    POST   /api/v1/negotiations/{id}/contracts/comments/{comment}/resolve — Resolve comment
    POST   /api/v1/negotiations/{id}/contracts/sign                       — Sign in-app
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved at runtime by FastAPI

from negotiation_engine.api.deps import (
    Viewer,
    get_db_session,
    get_publisher,
    get_signature_provider,
    get_viewer,
)
from negotiation_engine.domain.events import EventPublisher  # noqa: TC001
from negotiation_engine.schemas.contracts import (
    ContractRevisionResponse,
    CreateCommentRequest,
    CreateRevisionRequest,
    RevisionCommentResponse,
    RevisionComparisonResponse,
    SignContractRequest,
    UpdateRevisionStatusRequest,
)
from negotiation_engine.schemas.negotiation import DealContractResponse, SignContractResponse
from negotiation_engine.services.contract_revision_service import ContractRevisionService
from negotiation_engine.services.contract_signing_service import ContractSigningService
from negotiation_engine.services.esign_provider import ESignatureProvider  # noqa: TC001

router = APIRouter(prefix="/api/v1/negotiations/{negotiation_id}/contracts", tags=["Contracts"])


@router.post(
    "/revisions",
    response_model=ContractRevisionResponse,
    status_code=201,
    summary="Submit a contract revision",
)
async def create_revision(
    negotiation_id: str,
    request: CreateRevisionRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> ContractRevisionResponse:
    """Identical text to the latest revision returns that revision unchanged."""
    svc = ContractRevisionService(session, publisher)
    revision = await svc.create_revision(
        negotiation_id,
        viewer.user_id,
        body=request.body,
        summary=request.summary,
        is_admin=viewer.is_admin,
    )
    return ContractRevisionResponse.model_validate(revision)


@router.get(
    "/revisions",
    response_model=list[ContractRevisionResponse],
    summary="List contract revisions",
)
async def list_revisions(
    negotiation_id: str,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> list[ContractRevisionResponse]:
    svc = ContractRevisionService(session)
    revisions = await svc.list_revisions(negotiation_id, viewer.user_id, is_admin=viewer.is_admin)
    return [ContractRevisionResponse.model_validate(r) for r in revisions]


@router.get(
    "/revisions/compare",
    response_model=RevisionComparisonResponse,
    summary="Compare two revisions clause by clause",
)
async def compare_revisions(
    negotiation_id: str,
    base: str = Query(..., min_length=1, description="Base revision id"),
    target: str = Query(..., min_length=1, description="Target revision id"),
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> RevisionComparisonResponse:
    svc = ContractRevisionService(session)
    comparison = await svc.compare_revisions(
        negotiation_id, base, target, viewer.user_id, is_admin=viewer.is_admin
    )
    return RevisionComparisonResponse.model_validate(comparison.to_dict())


@router.post(
    "/revisions/{revision_id}/status",
    response_model=ContractRevisionResponse,
    summary="Move a revision through review",
)
async def update_revision_status(
    negotiation_id: str,
    revision_id: str,
    request: UpdateRevisionStatusRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> ContractRevisionResponse:
    svc = ContractRevisionService(session, publisher)
    revision = await svc.update_revision_status(
        negotiation_id,
        revision_id,
        viewer.user_id,
        request.status,
        is_admin=viewer.is_admin,
    )
    return ContractRevisionResponse.model_validate(revision)


@router.post(
    "/revisions/{revision_id}/comments",
    response_model=RevisionCommentResponse,
    status_code=201,
    summary="Comment on a revision",
)
async def add_comment(
    negotiation_id: str,
    revision_id: str,
    request: CreateCommentRequest,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> RevisionCommentResponse:
    svc = ContractRevisionService(session, publisher)
    comment = await svc.add_comment(
        negotiation_id,
        revision_id,
        viewer.user_id,
        body=request.body,
        anchor=request.anchor,
        is_admin=viewer.is_admin,
    )
    return RevisionCommentResponse.model_validate(comment)


@router.post(
    "/comments/{comment_id}/resolve",
    response_model=RevisionCommentResponse,
    summary="Resolve a revision comment",
)
async def resolve_comment(
    negotiation_id: str,
    comment_id: str,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> RevisionCommentResponse:
    svc = ContractRevisionService(session, publisher)
    comment = await svc.resolve_comment(
        negotiation_id, comment_id, viewer.user_id, is_admin=viewer.is_admin
    )
    return RevisionCommentResponse.model_validate(comment)


@router.post(
    "/sign",
    response_model=SignContractResponse,
    summary="Sign the deal contract in-app",
)
async def sign_contract(
    negotiation_id: str,
    request: SignContractRequest | None = None,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
    provider: ESignatureProvider = Depends(get_signature_provider),
) -> SignContractResponse:
    """Issues the envelope on first use. 409 when there is nothing left to sign."""
    svc = ContractSigningService(session, publisher, provider)
    result = await svc.sign_contract(
        negotiation_id,
        viewer.user_id,
        is_admin=viewer.is_admin,
        intent=request.intent if request else None,
    )
    return SignContractResponse(
        role=result.role.value,
        envelope_issued=result.envelope_issued,
        completed=result.completed,
        contract=DealContractResponse.model_validate(result.contract),
    )
