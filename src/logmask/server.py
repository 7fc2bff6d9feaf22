"""HTTP REST server for logmask."""

import logging
import time
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from logmask import __version__
from logmask.adapter import MaskingAdapter
from logmask.config import MaskingSettings, build_adapter, load_settings
from logmask.metrics import REQUEST_COUNT, REQUEST_DURATION

logger = logging.getLogger(__name__)


# Request/Response models
class MaskRequest(BaseModel):
    """Request model for /mask endpoint."""

    text: Optional[str] = None
    payload: Optional[Any] = None


class MaskResponse(BaseModel):
    """Response model for /mask endpoint."""

    text: Optional[str] = None
    payload: Optional[Any] = None
    redaction_count: int = 0
    matched_rule_ids: list[str] = Field(default_factory=list)


class TransformRequest(BaseModel):
    """Request model for /transform endpoint."""

    message: str
    args: Optional[list[Any]] = None


class TransformResponse(BaseModel):
    """Response model for /transform endpoint."""

    message: Optional[str]
    dropped: bool


class RuleInfo(BaseModel):
    """Description of a loaded rule."""

    id: str
    kind: str
    strategy: str
    priority: int
    description: str


class RulesResponse(BaseModel):
    """Response model for /rules endpoint."""

    rules: list[RuleInfo]
    rejected: list[str]


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str
    version: str
    rules_loaded: int
    failure_mode: str


class ReloadResponse(BaseModel):
    """Response model for /reload endpoint."""

    status: str
    rules_loaded: int
    rejected: int


class LogmaskServer:
    """Server wrapper for managing state."""

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        """Initialize server with configuration."""
        self.config = config or {}
        self.settings: Optional[MaskingSettings] = None
        self.adapter: Optional[MaskingAdapter] = None
        self._load_rules()

    def _load_rules(self) -> None:
        """Load rules from configuration."""
        self.settings = load_settings(self.config)
        logger.info(f"Loading rules from: {self.settings.rule_paths or 'defaults'}")
        self.adapter = build_adapter(self.settings)

    def reload_rules(self) -> dict[str, Any]:
        """Reload rules from files."""
        try:
            self._load_rules()
        except Exception as e:
            logger.error(f"Failed to reload rules: {e}")
            raise HTTPException(status_code=500, detail=f"Reload failed: {str(e)}")

        rule_set = self.adapter.engine.rule_set
        return {
            "status": "ok",
            "rules_loaded": len(rule_set),
            "rejected": len(rule_set.rejected),
        }


def create_app(config: Optional[dict[str, Any]] = None) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        config: Configuration dictionary (see logmask.config)

    Returns:
        FastAPI application instance
    """
    app = FastAPI(
        title="logmask",
        description="Sensitive data masking service for log lines",
        version=__version__,
    )

    server = LogmaskServer(config)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next: Any) -> Response:
        """Record metrics for each request."""
        start_time = time.time()
        endpoint = request.url.path

        response = await call_next(request)

        duration = time.time() - start_time
        REQUEST_COUNT.labels(endpoint=endpoint, status=response.status_code).inc()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(duration)

        return response

    @app.post("/mask", response_model=MaskResponse)
    async def mask(request: MaskRequest) -> MaskResponse:
        """Mask a string or a structured payload."""
        if server.adapter is None:
            raise HTTPException(status_code=500, detail="Engine not initialized")
        if request.text is None and request.payload is None:
            raise HTTPException(status_code=422, detail="Provide text or payload")

        engine = server.adapter.engine
        try:
            if request.text is not None:
                result = engine.apply(request.text)
                return MaskResponse(
                    text=result.redacted_text,
                    redaction_count=result.redaction_count,
                    matched_rule_ids=list(result.matched_rule_ids),
                )
            return MaskResponse(payload=engine.mask(request.payload))
        except Exception as e:
            logger.error(f"Mask error: {type(e).__name__}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/transform", response_model=TransformResponse)
    async def transform(request: TransformRequest) -> TransformResponse:
        """Format and mask a log message with the adapter's failure policy."""
        if server.adapter is None:
            raise HTTPException(status_code=500, detail="Engine not initialized")

        args = tuple(request.args) if request.args else None
        message = server.adapter.transform(request.message, args)
        return TransformResponse(message=message, dropped=message is None)

    @app.get("/rules", response_model=RulesResponse)
    async def rules() -> RulesResponse:
        """List loaded and rejected rules."""
        if server.adapter is None:
            raise HTTPException(status_code=503, detail="Rules not loaded")

        rule_set = server.adapter.engine.rule_set
        return RulesResponse(
            rules=[
                RuleInfo(
                    id=rule.id,
                    kind=rule.kind.value,
                    strategy=rule.replacement.strategy.value,
                    priority=rule.priority,
                    description=rule.description,
                )
                for rule in rule_set
            ],
            rejected=[e.rule_id for e in rule_set.rejected],
        )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Health check endpoint."""
        if server.adapter is None:
            raise HTTPException(status_code=503, detail="Rules not loaded")

        return HealthResponse(
            status="healthy",
            version=__version__,
            rules_loaded=len(server.adapter.engine.rule_set),
            failure_mode=server.adapter.failure_mode.value,
        )

    @app.post("/reload", response_model=ReloadResponse)
    async def reload() -> ReloadResponse:
        """Reload rules from files."""
        result = server.reload_rules()
        return ReloadResponse(**result)

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
