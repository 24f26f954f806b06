from __future__ import annotations
from typing import Literal
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import Account, File, ShareLink
from ..schemas import (
    CreatedShareLinkResponse, CreateShareLinkRequest, DownloadResponse, EmptyResponse, GrantPermissionRequest,
    Grantee, PermissionInfo, PreviewResponse, ShareActionRequest, SharedFile, SharedFolder, ShareLinkInfo,
    ShareLinkViewResponse, VerifyOtpRequest, VerifyPasswordRequest,
)
from ..security import get_current_account
from ..sharing import ClientInfo, GrantedPermission, ShareLinkGate
from .auth import client_ip

router = APIRouter(prefix="/sharing", tags=["sharing"])


def _gate(request: Request) -> ShareLinkGate:
    return request.app.state.share_gate


def _client(request: Request) -> ClientInfo:
    return ClientInfo(ip=client_ip(request), user_agent=request.headers.get('User-Agent'))


def _link_info(link: ShareLink) -> dict:
    return dict(
        id=link.id,
        token=link.token,
        file_id=link.file_id,
        folder_id=link.folder_id,
        permission=link.permission,
        has_password=bool(link.password_hash),
        otp_enabled=bool(link.otp_enabled),
        opens_at=link.opens_at,
        expires_at=link.expires_at,
        max_downloads=link.max_downloads,
        download_count=link.download_count or 0,
        is_active=bool(link.is_active),
        created_at=link.created_at,
    )


def _shared_file(f: File) -> SharedFile:
    return SharedFile(id=f.id, name=f.name, mime_type=f.mime_type, size=f.size or 0)


def _permission_info(granted: GrantedPermission) -> PermissionInfo:
    grant, grantee = granted.permission, granted.grantee
    return PermissionInfo(
        id=grant.id,
        file_id=grant.file_id,
        folder_id=grant.folder_id,
        role=grant.role,
        granted_by=grant.granted_by,
        granted_to=Grantee(id=grantee.id, name=grantee.name, email=grantee.email),
        expires_at=grant.expires_at,
        created_at=grant.created_at,
    )


# ---- owner endpoints

@router.post("/link", response_model=CreatedShareLinkResponse, status_code=201)
def create_link(payload: CreateShareLinkRequest, db: Session = Depends(get_db), account: Account = Depends(get_current_account), gate: ShareLinkGate = Depends(_gate)):
    created = gate.create_link(
        db, account,
        file_id=payload.file_id,
        folder_id=payload.folder_id,
        permission=payload.permission,
        password=payload.password,
        opens_at=payload.opens_at,
        expires_at=payload.expires_at,
        expires_in_hours=payload.expires_in,
        max_downloads=payload.max_downloads,
        otp_enabled=payload.otp_enabled,
    )
    # the OTP is handed to the owner once, here; it is never listed again
    return CreatedShareLinkResponse(**_link_info(created.link), share_url=created.share_url, otp_code=created.otp_code)


@router.get("/links", response_model=list[ShareLinkInfo])
def list_links(db: Session = Depends(get_db), account: Account = Depends(get_current_account), gate: ShareLinkGate = Depends(_gate)):
    return [ShareLinkInfo(**_link_info(link)) for link in gate.list_links(db, account)]


@router.post("/link/{link_id}/disable", response_model=EmptyResponse)
def disable_link(link_id: int, db: Session = Depends(get_db), account: Account = Depends(get_current_account), gate: ShareLinkGate = Depends(_gate)):
    gate.disable_link(db, account, link_id)
    return EmptyResponse()


@router.delete("/link/delete/{link_id}", response_model=EmptyResponse)
def delete_link(link_id: int, db: Session = Depends(get_db), account: Account = Depends(get_current_account), gate: ShareLinkGate = Depends(_gate)):
    gate.delete_link(db, account, link_id)
    return EmptyResponse()


@router.post("/permission", response_model=PermissionInfo, status_code=201)
def grant_permission(payload: GrantPermissionRequest, db: Session = Depends(get_db), account: Account = Depends(get_current_account), gate: ShareLinkGate = Depends(_gate)):
    granted = gate.grant_permission(
        db, account,
        grantee_id=payload.user_id,
        role=payload.role,
        file_id=payload.file_id,
        folder_id=payload.folder_id,
        expires_at=payload.expires_at,
    )
    return _permission_info(granted)


@router.get("/permissions/{resource_id}", response_model=list[PermissionInfo])
def list_permissions(resource_id: int, kind: Literal["file", "folder"] | None = None, db: Session = Depends(get_db), account: Account = Depends(get_current_account), gate: ShareLinkGate = Depends(_gate)):
    return [_permission_info(g) for g in gate.list_permissions(db, account, resource_id, kind)]


@router.delete("/permission/{permission_id}", response_model=EmptyResponse)
def revoke_permission(permission_id: int, db: Session = Depends(get_db), account: Account = Depends(get_current_account), gate: ShareLinkGate = Depends(_gate)):
    gate.revoke_permission(db, account, permission_id)
    return EmptyResponse()


# ---- public endpoints (no bearer token)

@router.get("/link/{token}", response_model=ShareLinkViewResponse)
def view_link(token: str, request: Request, db: Session = Depends(get_db), gate: ShareLinkGate = Depends(_gate)):
    view = gate.view_metadata(db, token, _client(request))
    link = view.link
    folder = None
    if view.folder is not None:
        folder = SharedFolder(id=view.folder.id, name=view.folder.name, files=[_shared_file(f) for f in view.folder_files])
    return ShareLinkViewResponse(
        permission=link.permission,
        requires_password=view.requires_password,
        requires_otp=view.requires_otp,
        opens_at=link.opens_at,
        expires_at=link.expires_at,
        download_count=link.download_count or 0,
        max_downloads=link.max_downloads,
        file=_shared_file(view.file) if view.file is not None else None,
        folder=folder,
    )


@router.post("/link/{token}/verify", response_model=EmptyResponse)
def verify_password(token: str, payload: VerifyPasswordRequest, request: Request, db: Session = Depends(get_db), gate: ShareLinkGate = Depends(_gate)):
    gate.verify_password(db, token, payload.password, _client(request))
    return EmptyResponse()


@router.post("/link/{token}/verify-otp", response_model=EmptyResponse)
def verify_otp(token: str, payload: VerifyOtpRequest, request: Request, db: Session = Depends(get_db), gate: ShareLinkGate = Depends(_gate)):
    gate.verify_otp(db, token, payload.otp, _client(request))
    return EmptyResponse()


@router.post("/link/{token}/download", response_model=DownloadResponse)
def download(token: str, request: Request, payload: ShareActionRequest | None = None, db: Session = Depends(get_db), gate: ShareLinkGate = Depends(_gate)):
    payload = payload or ShareActionRequest()
    handle = gate.download(db, token, payload.file_id, payload.password, payload.otp, _client(request))
    return DownloadResponse(retrieval_handle=handle.url, file_name=handle.file.name, expires_in=handle.expires_in)


@router.post("/link/{token}/preview", response_model=PreviewResponse)
def preview(token: str, payload: ShareActionRequest | None = None, db: Session = Depends(get_db), gate: ShareLinkGate = Depends(_gate)):
    payload = payload or ShareActionRequest()
    handle = gate.preview(db, token, payload.file_id, payload.password, payload.otp)
    f = handle.file
    return PreviewResponse(retrieval_handle=handle.url, file_name=f.name, mime_type=f.mime_type, size=f.size or 0, expires_in=handle.expires_in)
