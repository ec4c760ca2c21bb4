"""FastAPI dependencies for dependency injection."""

from typing import Annotated, Any, cast

from fastapi import Depends
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ballot_guide_api.config import Settings, get_settings
from ballot_guide_api.models import Base
from ballot_guide_api.services.ballot_store import BallotStore
from ballot_guide_api.services.districts import DistrictResolver, HttpDistrictResolver
from ballot_guide_api.services.feedback import AnalyticsRecorder
from ballot_guide_api.services.generator import (
    HttpRecommendationGenerator,
    RecommendationGenerator,
)
from ballot_guide_api.services.guide import GuideOrchestrator

# Global engine, session factory and outbound clients (created once at startup)
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None
_generator: HttpRecommendationGenerator | None = None
_resolver: HttpDistrictResolver | None = None


def _engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            # One shared connection, or every session would see its own empty database
            options["poolclass"] = StaticPool
        return options
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


def init_db(settings: Settings) -> None:
    """Initialize database engine and session factory.

    Should be called once at application startup.
    """
    global _engine, _session_factory

    _engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    if settings.create_tables:
        Base.metadata.create_all(_engine)


def init_clients(settings: Settings) -> None:
    """Create the outbound HTTP clients shared by all requests."""
    global _generator, _resolver

    _generator = HttpRecommendationGenerator(settings)
    _resolver = HttpDistrictResolver(settings)


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for work that outlives the request (background tasks, guide runs)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() at startup.")
    return cast(sessionmaker[Session], _session_factory)


def get_ballot_store(
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
) -> BallotStore:
    return BallotStore(session_factory)


def get_generator() -> RecommendationGenerator:
    if _generator is None:
        raise RuntimeError("Clients not initialized. Call init_clients() at startup.")
    return _generator


def get_district_resolver() -> DistrictResolver:
    if _resolver is None:
        raise RuntimeError("Clients not initialized. Call init_clients() at startup.")
    return _resolver


def get_orchestrator(
    store: Annotated[BallotStore, Depends(get_ballot_store)],
    generator: Annotated[RecommendationGenerator, Depends(get_generator)],
    resolver: Annotated[DistrictResolver, Depends(get_district_resolver)],
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> GuideOrchestrator:
    analytics = AnalyticsRecorder(session_factory, settings.analytics_events)
    return GuideOrchestrator(store, generator, resolver, settings, analytics=analytics)


async def close_clients() -> None:
    """Close outbound HTTP clients.

    Should be called at application shutdown.
    """
    global _generator, _resolver
    if _generator:
        await _generator.aclose()
        _generator = None
    if _resolver:
        await _resolver.aclose()
        _resolver = None


def close_db() -> None:
    """Close database connections.

    Should be called at application shutdown.
    """
    global _engine
    if _engine:
        _engine.dispose()


# Type aliases for dependency injection
SessionFactory = Annotated[sessionmaker[Session], Depends(get_session_factory)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Store = Annotated[BallotStore, Depends(get_ballot_store)]
Orchestrator = Annotated[GuideOrchestrator, Depends(get_orchestrator)]
