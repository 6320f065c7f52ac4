"""HTTP API for the news clusterer."""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .errors import InvalidForceMerge, OracleError
from .logging_config import configure_from_settings, get_logger
from .models import Article, Cluster
from .service import StoryDesk

logger = get_logger(__name__)

# Global instance (initialized on startup or on first use)
desk: Optional[StoryDesk] = None


class ClusterStoriesRequest(BaseModel):
    articles: List[Dict[str, Any]] = Field(..., description="Raw article objects")


class ClustersRequest(BaseModel):
    clusters: List[Dict[str, Any]] = Field(..., description="Clusters as returned by /api/cluster-stories")


def get_desk() -> StoryDesk:
    """Return the story desk, building it from the environment if needed."""
    global desk
    if desk is None:
        desk = StoryDesk.from_settings(Settings.from_env())
    return desk


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    current = get_desk()
    logger.info(f"Started web server with {type(current.rule_store).__name__}")
    yield
    logger.info("Web server shutdown complete")


app = FastAPI(title="News Clusterer", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    """Return readable validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append(f"{field}: {error['msg']}")
    return JSONResponse(
        status_code=422,
        content={"status": "error", "message": "Validation error", "details": errors}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Return consistent error format for HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.detail}
    )


@app.exception_handler(InvalidForceMerge)
async def invalid_force_merge_handler(request, exc):
    return JSONResponse(status_code=400, content={"status": "error", "message": str(exc)})


@app.exception_handler(OracleError)
async def oracle_error_handler(request, exc):
    """The oracle failed; the caller may retry the whole batch."""
    logger.error(f"Oracle failure during {exc.operation or 'request'}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"status": "error", "message": str(exc), "operation": exc.operation}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Catch-all handler for unexpected errors."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"}
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/cluster-stories")
def cluster_stories(request: ClusterStoriesRequest):
    """Group raw articles into deduplicated story clusters."""
    articles = [Article.from_dict(a) for a in request.articles]
    logger.info(f"Clustering {len(articles)} articles...")
    clusters = get_desk().cluster(articles)
    return {"clusters": [c.to_dict() for c in clusters]}


@app.post("/api/learn-force-merge")
def learn_force_merge(request: ClustersRequest):
    """Merge operator-selected clusters and learn a merge rule from them."""
    if len(request.clusters) < 2:
        raise InvalidForceMerge("clusters array with at least 2 items is required")
    clusters = [Cluster.from_dict(c) for c in request.clusters]
    result = get_desk().force_merge_clusters(clusters)
    return {
        "merged_cluster": result.merged_cluster.to_dict(),
        "learned_rule_count": result.learned_rule_count,
        "learned_tokens": result.learned_rule.tokens if result.learned_rule else [],
    }


@app.post("/api/check-duplicates")
def check_duplicates(request: ClustersRequest):
    """Flag clusters that repeat recently published posts."""
    clusters = [Cluster.from_dict(c) for c in request.clusters]
    logger.info(f"Checking {len(clusters)} clusters for duplicates...")
    checked = get_desk().check_duplicates(clusters)
    return {
        "clusters": [c.to_dict() for c in checked],
        "duplicate_count": sum(1 for c in checked if c.duplicate),
    }


@app.get("/api/rules")
def list_rules(limit: int = Query(50, ge=1, le=200, description="Most recent rules to return")):
    """List learned merge rules, newest first."""
    learned = get_desk().rule_store.load()
    return {
        "rules": [r.to_dict() for r in reversed(learned[-limit:])],
        "count": len(learned),
    }


def run_server(
    host: str = "127.0.0.1",
    port: int = 8000,
    settings: Optional[Settings] = None,
    log_level: Optional[str] = None,
):
    """Run the web server."""
    import uvicorn
    global desk

    settings = settings or Settings.from_env()
    configure_from_settings(settings, level=log_level)
    desk = StoryDesk.from_settings(settings)

    uvicorn.run(app, host=host, port=port, log_level=(log_level or settings.log_level).lower())
