import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mathsolver.config.loader import get_provider_seeds
from mathsolver.constants import ADMIN_API_TOKEN, PROVIDER_CONFIG_PATH
from mathsolver.db.engine import build_engine, init_db
from mathsolver.db.store import SqlProviderStore
from mathsolver.errors import InvalidRequestError, NotFoundError
from mathsolver.llm.engine import FallbackEngine
from mathsolver.llm.quota import QuotaClock
from mathsolver.llm.registry import ProviderRegistry
from mathsolver.llm.transport import HttpTransport, Transport
from mathsolver.llm.usage import UsageTracker
from mathsolver.schemas import (
    ProbeResult,
    Provider,
    SolveResult,
    SolveStatus,
    TokenPatch,
    TokenSpec,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


class ModelUpdateRequest(BaseModel):
    selected_model: str


class SolveRequest(BaseModel):
    prompt: str = Field(min_length=1)


def _mask_key(key: str) -> str:
    if len(key) <= 12:
        return "*" * len(key)
    return f"{key[:4]}...{key[-4:]}"


def _public(provider: Provider) -> Provider:
    tokens = [t.model_copy(update={"key": _mask_key(t.key)}) for t in provider.tokens]
    return provider.model_copy(update={"tokens": tokens})


async def require_admin(authorization: str | None = Header(default=None)) -> None:
    if not ADMIN_API_TOKEN:
        return
    if authorization != f"Bearer {ADMIN_API_TOKEN}":
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def _engine(request: Request) -> FallbackEngine:
    return request.app.state.engine


admin = APIRouter(prefix="/api/ai-providers", dependencies=[Depends(require_admin)])


@admin.get("", response_model=list[Provider])
async def list_providers(request: Request):
    providers = await _registry(request).list_providers()
    return [_public(p) for p in providers]


@admin.patch("/{provider_id}/activate", response_model=Provider)
async def activate_provider(provider_id: int, request: Request):
    return _public(await _registry(request).activate(provider_id))


@admin.patch("/{provider_id}/model", response_model=Provider)
async def update_model(provider_id: int, req: ModelUpdateRequest, request: Request):
    return _public(await _registry(request).set_model(provider_id, req.selected_model))


@admin.post("/{provider_id}/tokens", response_model=Provider)
async def add_token(provider_id: int, spec: TokenSpec, request: Request):
    return _public(await _registry(request).add_token(provider_id, spec))


@admin.patch("/{provider_id}/tokens/{token_id}", response_model=Provider)
async def update_token(provider_id: int, token_id: str, patch: TokenPatch, request: Request):
    return _public(await _registry(request).update_token(provider_id, token_id, patch))


@admin.delete("/{provider_id}/tokens/{token_id}", response_model=Provider)
async def delete_token(provider_id: int, token_id: str, request: Request):
    return _public(await _registry(request).delete_token(provider_id, token_id))


@admin.post("/{provider_id}/test", response_model=ProbeResult)
async def test_provider(provider_id: int, request: Request):
    probe = await _engine(request).probe(provider_id)
    if probe.result.status == SolveStatus.ERROR:
        return JSONResponse(status_code=502, content=probe.model_dump(mode="json"))
    return probe


api = APIRouter()


@api.get("/health")
async def health():
    return {"status": "OK", "timestamp": datetime.now().isoformat()}


@api.post("/api/solve", response_model=SolveResult)
async def solve(req: SolveRequest, request: Request):
    return await _engine(request).solve(req.prompt)


def create_app(
    database_url: str | None = None,
    transport: Transport | None = None,
    config_path: str | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_engine = build_engine(database_url)
        await init_db(db_engine)
        store = SqlProviderStore(db_engine)
        clock = QuotaClock()
        registry = ProviderRegistry(store, clock)
        seeds = get_provider_seeds(config_path if config_path is not None else PROVIDER_CONFIG_PATH)
        created = await registry.bootstrap(seeds)
        if created:
            logger.info("Bootstrapped %d provider(s)", created)

        backend = transport or HttpTransport()
        app.state.registry = registry
        app.state.engine = FallbackEngine(registry, backend, UsageTracker(store, clock))
        logger.info("Provider routing initialized")
        yield
        if transport is None:
            await backend.aclose()
        await db_engine.dispose()
        logger.info("Provider routing shut down")

    app = FastAPI(title="Math Solver AI Gateway", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    app.include_router(api)
    app.include_router(admin)
    return app


app = create_app()
