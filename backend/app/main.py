from __future__ import annotations

from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request

from . import schemas
from .core.config import settings
from .domain import SourceName, TopicQuery
from .services.arbitrage_service import ArbitrageService
from .services.container import ServiceContainer, build_container
from .services.election_service import ElectionService
from .services.market_service import MarketService

app = FastAPI(title="Market Watch API", version="0.1.0", debug=settings.debug)


@app.on_event("startup")
async def on_startup() -> None:
    """Wire the cache tier and exchange clients when the API boots."""

    app.state.container = build_container(settings)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    container: ServiceContainer | None = getattr(app.state, "container", None)
    if container is not None:
        await container.aclose()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Services are not initialized")
    return container


def _market_service(container: ServiceContainer = Depends(_container)) -> MarketService:
    return container.markets


def _arbitrage_service(container: ServiceContainer = Depends(_container)) -> ArbitrageService:
    return container.arbitrage


def _election_service(container: ServiceContainer = Depends(_container)) -> ElectionService:
    return container.elections


SourceFilter = Annotated[SourceName | None, Query(description="Restrict to one exchange")]


def _split_keywords(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


@app.get("/markets", response_model=schemas.MarketList, tags=["markets"])
async def list_markets(
    *,
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
    source: SourceFilter = None,
    service: MarketService = Depends(_market_service),
):
    """Highest-volume markets across every exchange."""

    result = await service.get_top_markets(limit, source=source)
    return schemas.MarketList(
        total=result.total, items=[schemas.Market.from_domain(market) for market in result.markets]
    )


@app.get("/markets/topic", response_model=schemas.TopicMarketList, tags=["markets"])
async def markets_by_topic(
    *,
    q: Annotated[str | None, Query(description="Comma-separated required keywords")] = None,
    boost: Annotated[str | None, Query(description="Comma-separated boost keywords")] = None,
    match_all: Annotated[bool, Query(description="Require every keyword in q")] = False,
    limit: Annotated[int, Query(ge=1, le=200, description="Maximum markets taken from each exchange")] = 50,
    source: SourceFilter = None,
    service: MarketService = Depends(_market_service),
):
    """Markets ranked by keyword relevance."""

    required = _split_keywords(q)
    if not required:
        raise HTTPException(status_code=400, detail="Query parameter 'q' is required")
    query = TopicQuery(required=required, boost=_split_keywords(boost), match_all=match_all)
    result = await service.get_markets_by_topic(query, per_source_limit=limit, source=source)
    items = [schemas.Market.from_domain(market) for market in result.markets]
    return schemas.TopicMarketList(
        total=len(items),
        items=items,
        required=list(query.required),
        boost=list(query.boost),
        match_all=query.match_all,
        sources=dict(result.sources),
    )


@app.get("/markets/country/{name}", response_model=schemas.CountryMarketList, tags=["markets"])
async def markets_by_country(
    name: str,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    source: SourceFilter = None,
    service: MarketService = Depends(_market_service),
):
    """Markets mentioning a country by name, alias or acronym."""

    result = await service.get_markets_by_country(name, source=source)
    items = [schemas.Market.from_domain(market) for market in list(result.markets)[:limit]]
    return schemas.CountryMarketList(total=len(items), items=items, country=name)


@app.get("/arbitrage", response_model=schemas.ArbitrageReport, tags=["arbitrage"])
async def arbitrage_opportunities(service: ArbitrageService = Depends(_arbitrage_service)):
    """Same-question markets whose prices diverge across exchanges."""

    return await service.get_opportunities()


@app.get("/elections/live", response_model=schemas.ElectionLiveData, tags=["elections"])
async def election_live(service: ElectionService = Depends(_election_service)):
    return await service.get_live_data()


@app.get("/elections/live/{state}", response_model=schemas.StateElectionData, tags=["elections"])
async def election_state(state: str, service: ElectionService = Depends(_election_service)):
    """Ratings and primaries for one state."""

    if service.resolve_state(state) not in service.catalog.state_codes:
        raise HTTPException(status_code=404, detail="Unknown state")
    return await service.get_state_data(state)
