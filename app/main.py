from fastapi import FastAPI

from api.v1.chat import router as chat_router
from api.v1.ens import router as ens_router
from app.config import get_settings
from app.core.logging import configure_logging
from app.core.middleware import SessionContextMiddleware
from chain.chains import list_supported_chains


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="ENS Agent", version="0.1.0")
    app.add_middleware(SessionContextMiddleware)
    app.include_router(chat_router, prefix="/v1")
    app.include_router(ens_router, prefix="/v1")

    @app.get("/healthz")
    async def healthz():
        s = get_settings()
        return {
            "ok": True,
            "llm_enabled": s.LLM_ENABLED,
            "chain_id": s.chain_id,
            "supported_chains": list_supported_chains(),
            "session_store": s.session_store,
            "db_configured": bool(s.DATABASE_URL),
        }

    return app


app = create_app()
