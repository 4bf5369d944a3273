from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from loguru import logger

from constellation.bridge.errors import BridgeError
from constellation.bridge.log import setup_logging
from constellation.bridge.managers.agent import AgentRunner
from constellation.bridge.managers.containers import ContainerManager
from constellation.bridge.managers.ports import PortAllocator
from constellation.bridge.managers.workspaces import WorkspaceStore
from constellation.bridge.models.api import HealthResponse
from constellation.bridge.process.privileged import ContainerCommandRunner
from constellation.bridge.registry import TerminalRegistry
from constellation.bridge.settings import BridgeSettings, get_settings


def init_state(app: FastAPI, settings: BridgeSettings) -> None:
    """Build every service from *settings* and attach it to ``app.state``."""
    workspaces = WorkspaceStore(
        settings.workspace_root,
        git_init=settings.workspace_git_init,
        command_timeout=settings.command_timeout,
    )
    workspaces.ensure_root()

    runner = ContainerCommandRunner(
        binary=settings.container_binary,
        elevation=settings.container_elevation,
        group=settings.container_group,
        timeout=settings.command_timeout,
        max_buffer=settings.max_output_bytes,
    )
    ports = PortAllocator(settings.port_range_start, settings.port_range_size, probe=settings.port_probe)

    app.state.settings = settings
    app.state.workspaces = workspaces
    app.state.containers = ContainerManager(
        runner,
        ports,
        default_image=settings.container_default_image,
        mount_path=settings.container_mount_path,
        name_prefix=settings.container_name_prefix,
    )
    app.state.agent = AgentRunner(
        workspaces,
        command=settings.agent_command,
        args=settings.agent_args,
        json_args=settings.agent_json_args,
        timeout=settings.agent_timeout,
        max_buffer=settings.max_output_bytes,
    )
    app.state.terminal_registry = TerminalRegistry()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.log_json, log_file=settings.log_file)

    logger.info("Constellation bridge starting (host={}, port={})", settings.host, settings.port)
    init_state(_app, settings)
    logger.info("Workspace root: {}", settings.workspace_root)
    logger.info(
        "Container runtime: {} via {} (group={})",
        settings.container_binary,
        settings.container_elevation,
        settings.container_group,
    )

    yield

    # -- Shutdown --------------------------------------------------------------
    registry: TerminalRegistry = _app.state.terminal_registry
    logger.info("Constellation bridge shutting down (active_terminals={})", registry.active_count)

    # 1. Refuse new terminals.
    registry.begin_shutdown()

    # 2. Kill live shells; their socket handlers unregister them.
    if registry.active_count > 0:
        terminated = registry.terminate_all()
        logger.info("Terminated {} terminal sessions", terminated)
        await registry.wait_until_drained(timeout=settings.graceful_shutdown_timeout)


app = FastAPI(title="Constellation Bridge", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BridgeError)
async def handle_bridge_error(_request: Request, exc: BridgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{}: {}", type(exc).__name__, exc)
    else:
        logger.info("{}: {}", type(exc).__name__, exc)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})


# ---------------------------------------------------------------------------
# API router -- all HTTP endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    registry: TerminalRegistry | None = getattr(request.app.state, "terminal_registry", None)
    workspaces: WorkspaceStore | None = getattr(request.app.state, "workspaces", None)
    return HealthResponse(
        timestamp=datetime.now(tz=UTC),
        workspace_root=str(workspaces.root) if workspaces else "",
        active_terminals=registry.active_count if registry else 0,
    )


from constellation.bridge.routers.chat import router as chat_router  # noqa: E402
from constellation.bridge.routers.containers import router as containers_router  # noqa: E402
from constellation.bridge.routers.files import router as files_router  # noqa: E402
from constellation.bridge.routers.terminal import router as terminal_router  # noqa: E402
from constellation.bridge.routers.workspaces import router as workspaces_router  # noqa: E402

api.include_router(workspaces_router)
api.include_router(files_router)
api.include_router(containers_router)
api.include_router(chat_router)

app.include_router(api)
app.include_router(terminal_router)
