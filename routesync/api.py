from __future__ import annotations

import secrets

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from . import db
from .api_models import FrontendDeclarationIn
from .builder import to_wire
from .discovery import DiscoveryClient, DiscoveryError
from .reconciler import Reconciler
from .settings import Settings, settings as default_settings
from .store import DeclarationStore


def build_reconciler(cfg: Settings) -> Reconciler:
    client = DiscoveryClient(cfg.discovery_url or "", timeout_s=cfg.discovery_timeout_s, auth=cfg.discovery_auth)
    return Reconciler(client, interval_s=cfg.poll_interval_s)


def create_app(
    reconciler: Reconciler | None = None,
    store: DeclarationStore | None = None,
    cfg: Settings | None = None,
) -> FastAPI:
    """Admin API around a reconciler.

    Startup loads the stored declarations and performs the first commit; a
    failure there aborts startup. The poll timer runs until shutdown.
    """
    cfg = cfg or default_settings
    reconciler = reconciler or build_reconciler(cfg)
    store = store or DeclarationStore(cfg.declarations_path)

    app = FastAPI(title="routesync admin")
    app.state.reconciler = reconciler
    app.state.store = store
    security = HTTPBasic()

    def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
        password = cfg.admin_password
        user_ok = secrets.compare_digest(credentials.username.encode(), cfg.admin_user.encode())
        pass_ok = bool(password) and secrets.compare_digest(credentials.password.encode(), (password or "").encode())
        if not (user_ok and pass_ok):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
                headers={"WWW-Authenticate": 'Basic realm="Authorization Required"'},
            )
        return credentials.username

    @app.on_event("startup")
    def startup() -> None:
        db.init_db()
        db.prune_events()
        declarations = store.load()
        reconciler.bootstrap(declarations)
        reconciler.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        reconciler.stop()

    @app.get("/health")
    def health() -> dict:
        committed = reconciler.committed
        return {
            "status": "healthy",
            "running": reconciler.running,
            "committed_at": committed.committed_at if committed else None,
            "fingerprint": committed.fingerprint if committed else None,
        }

    @app.post("/")
    def replace_declarations(
        body: list[FrontendDeclarationIn],
        username: str = Depends(get_current_username),
    ) -> dict:
        try:
            declarations = [d.to_declaration() for d in body]
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        store.save(declarations)
        db.log_event("INFO", f"{username} replaced declarations ({len(declarations)} frontend(s))")
        try:
            reconciler.configure(declarations)
        except DiscoveryError as e:
            db.log_event("ERROR", f"Configuration after admin write failed: {type(e).__name__}: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Discovery failed: {e}") from e
        return {"status": "ok", "frontends": len(declarations)}

    @app.get("/declarations")
    def get_declarations(username: str = Depends(get_current_username)) -> list:
        return [d.to_dict() for d in (reconciler.declarations or ())]

    @app.get("/config")
    def get_config(username: str = Depends(get_current_username)) -> dict:
        committed = reconciler.committed
        if committed is None:
            return {"fingerprint": None, "committed_at": None, "frontends": []}
        return {
            "fingerprint": committed.fingerprint,
            "committed_at": committed.committed_at,
            "frontends": to_wire(committed.results),
        }

    @app.get("/events")
    def get_events(
        limit: int = Query(50, ge=1, le=1000),
        level: str | None = None,
        username: str = Depends(get_current_username),
    ) -> list:
        return db.latest_events(limit=limit, level=level)

    return app
