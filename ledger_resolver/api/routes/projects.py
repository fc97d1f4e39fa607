from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from ledger_resolver.core.config import Settings, get_settings
from ledger_resolver.schemas.projects import DecodeOut, DecodeRequest, ProjectOut, ResolutionOut
from ledger_resolver.services.decoder import detect_shape
from ledger_resolver.services.records import ResolutionContext
from ledger_resolver.services.resolver import LedgerTransportError, decode_only, get_resolver

router = APIRouter()


@router.post("/decode", response_model=DecodeOut)
async def decode_project(payload: DecodeRequest) -> DecodeOut:
    return DecodeOut(shape=detect_shape(payload.payload).value, attributes=dict(decode_only(payload.payload)))


@router.get("/{project_id}", response_model=ResolutionOut)
async def get_project(
    project_id: str,
    requester: str | None = Query(default=None, min_length=1),
    settings: Settings = Depends(get_settings),
    resolver=Depends(get_resolver),
) -> ResolutionOut:
    if not settings.registry_id:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail="registry id not configured")

    context = ResolutionContext(registry_id=settings.registry_id, requester_id=requester)
    try:
        result = await resolver.resolve(project_id, context, timeout_seconds=settings.resolve_timeout_seconds)
    except LedgerTransportError as exc:
        raise HTTPException(status_code=http_status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise HTTPException(status_code=http_status.HTTP_504_GATEWAY_TIMEOUT, detail="resolution timed out") from exc

    if result.status == "found_but_unavailable":
        raise HTTPException(
            status_code=http_status.HTTP_410_GONE,
            detail="project existed but its data can no longer be read",
        )
    if result.record is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="project not found")

    return ResolutionOut(
        status=result.status,
        identifier=result.identifier,
        source=result.source,
        match_kind=result.match_kind,
        project=ProjectOut(**result.record.to_dict()),
    )
