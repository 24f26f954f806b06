from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from ..auth import AuthService
from ..db import get_db
from ..mfa import MfaManager
from ..models import Account
from ..schemas import (
    AccountSummary, AuthResponse, DeleteResponse, EmptyResponse, EnableMfaRequest,
    LoginRequest, MfaSetupResponse, PasswordConfirmRequest, RecoveryCodesResponse,
    RecoveryCodeStatusResponse, RefreshTokenRequest, RegisterRequest, SessionInfo,
    TokenPairResponse,
)
from ..security import get_current_account
from ..tokens import TokenIssuer

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _mfa(request: Request) -> MfaManager:
    return request.app.state.mfa_manager


def _tokens(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def client_ip(request: Request) -> str | None:
    return request.headers.get('X-Forwarded-For') or (request.client.host if request.client else None)


def _summary(account: Account) -> AccountSummary:
    return AccountSummary(
        id=account.id,
        email=account.email,
        name=account.name,
        role=account.role,
        mfa_enabled=bool(account.mfa_enabled),
        storage_quota=account.storage_quota,
        storage_used=account.storage_used,
    )


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest, request: Request, db: Session = Depends(get_db), service: AuthService = Depends(_auth_service)):
    result = service.register(
        db, payload.email, payload.password, payload.name,
        ip=client_ip(request), user_agent=request.headers.get('User-Agent'),
    )
    return AuthResponse(account=_summary(result.account), access_token=result.tokens.access_token, refresh_token=result.tokens.refresh_token)


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db), service: AuthService = Depends(_auth_service)):
    result = service.login(
        db, payload.email, payload.password, payload.totp_code,
        ip=client_ip(request), user_agent=request.headers.get('User-Agent'),
    )
    return AuthResponse(account=_summary(result.account), access_token=result.tokens.access_token, refresh_token=result.tokens.refresh_token)


@router.post("/refresh", response_model=TokenPairResponse)
def refresh(payload: RefreshTokenRequest, db: Session = Depends(get_db), service: AuthService = Depends(_auth_service)):
    pair = service.refresh(db, payload.refresh_token)
    return TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/logout", response_model=EmptyResponse)
def logout(payload: RefreshTokenRequest, db: Session = Depends(get_db), service: AuthService = Depends(_auth_service)):
    service.logout(db, payload.refresh_token)
    return EmptyResponse()


@router.get("/me", response_model=AccountSummary)
def me(account: Account = Depends(get_current_account)):
    return _summary(account)


@router.get("/sessions", response_model=list[SessionInfo])
def sessions(db: Session = Depends(get_db), account: Account = Depends(get_current_account), tokens: TokenIssuer = Depends(_tokens)):
    rows = tokens.list_sessions(db, account.id)
    return [SessionInfo(id=s.id, created_at=s.created_at, expires_at=s.expires_at, ip=s.ip, user_agent=s.user_agent) for s in rows]


@router.delete("/sessions/{session_id}", response_model=DeleteResponse)
def revoke_session(session_id: int, db: Session = Depends(get_db), account: Account = Depends(get_current_account), tokens: TokenIssuer = Depends(_tokens)):
    return DeleteResponse(deleted=tokens.revoke_session(db, account.id, session_id))


# ---- MFA

@router.get("/mfa/setup", response_model=MfaSetupResponse)
def mfa_setup(db: Session = Depends(get_db), account: Account = Depends(get_current_account), mfa: MfaManager = Depends(_mfa)):
    enrollment = mfa.begin_enrollment(db, account)
    return MfaSetupResponse(secret=enrollment.secret, provisioning_uri=enrollment.provisioning_uri)


@router.post("/mfa/enable", response_model=RecoveryCodesResponse)
def mfa_enable(payload: EnableMfaRequest, db: Session = Depends(get_db), account: Account = Depends(get_current_account), mfa: MfaManager = Depends(_mfa)):
    batch = mfa.confirm_enrollment(db, account, payload.totp_code)
    return RecoveryCodesResponse(recovery_codes=list(batch.codes))


@router.post("/mfa/regenerate", response_model=RecoveryCodesResponse)
def mfa_regenerate(payload: PasswordConfirmRequest, db: Session = Depends(get_db), account: Account = Depends(get_current_account), mfa: MfaManager = Depends(_mfa)):
    batch = mfa.regenerate_recovery_codes(db, account, payload.password_confirm, payload.totp_code)
    return RecoveryCodesResponse(recovery_codes=list(batch.codes))


@router.post("/mfa/disable", response_model=EmptyResponse)
def mfa_disable(payload: PasswordConfirmRequest, db: Session = Depends(get_db), account: Account = Depends(get_current_account), mfa: MfaManager = Depends(_mfa)):
    mfa.disable(db, account, payload.password_confirm, payload.totp_code)
    return EmptyResponse()


@router.get("/mfa/recovery-codes", response_model=RecoveryCodeStatusResponse)
def mfa_recovery_codes(db: Session = Depends(get_db), account: Account = Depends(get_current_account), mfa: MfaManager = Depends(_mfa)):
    status = mfa.recovery_code_status(db, account)
    return RecoveryCodeStatusResponse(total=status.total, remaining=status.remaining)
