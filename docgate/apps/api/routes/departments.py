from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from docgate.apps.api.deps import get_catalog, require_roles
from docgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES, FORBIDDEN_RESPONSE
from docgate.apps.api.response import SuccessEnvelope, success_response
from docgate.apps.api.routes.documents import DocumentResponse, document_response
from docgate.core.errors import AccessDeniedError
from docgate.domain.access import ActorContext, Role
from docgate.services.catalog import Catalog


router = APIRouter(prefix="/departments", tags=["departments"], responses=DEFAULT_ERROR_RESPONSES)


@router.get(
    "/{department_id}/documents",
    response_model=SuccessEnvelope[list[DocumentResponse]],
    responses=FORBIDDEN_RESPONSE,
)
async def list_department_documents(
    department_id: str,
    request: Request,
    actor: ActorContext = Depends(require_roles(Role.DEPT_ADMIN, Role.GLOBAL_ADMIN)),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    if actor.role is Role.DEPT_ADMIN and actor.department_id != department_id:
        raise AccessDeniedError("Department is outside your scope")
    documents = await catalog.documents_in_department(department_id)
    return success_response(request=request, data=[document_response(doc) for doc in documents])
