"""
Damage Engine: FastAPI route integration.

Endpoints exposing the reconciled damage views:
  GET  /api/v1/neighborhoods                          Neighborhood ids and names
  GET  /api/v1/geography                              Boundaries and centroids
  GET  /api/v1/neighborhoods/{location}/snapshot      Six categories for one neighborhood
  GET  /api/v1/neighborhoods/{location}/summary       Raw-report statistics for one neighborhood
  GET  /api/v1/categories/{category}/map              Every neighborhood for one category
  GET  /api/v1/comparison                             Five-number summary per category
  GET  /api/v1/forecast/{location}/{category}         Aggregated BSTS forecast window
  GET  /api/v1/insights                               City-wide summary
  GET  /api/v1/categories/{category}/report-series    Hourly raw report series
  POST /api/v1/reports/filter                        Raw reports matching filter criteria
  GET  /api/v1/cache/stats                            DataStore cache counters

The DataStore and DamageViews instances live on app.state.
"""

import logging
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from damage_engine.data_acquisition.base_loader import DatasetLoadError
from damage_engine.data_acquisition.loaders import canonical_category, parse_query_time
from damage_engine.views import COMPARISON_MODES, DamageViews

logger = logging.getLogger(__name__)


class ReportFilter(BaseModel):
    categories: List[str] = []
    neighborhood: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    certainty_level: Optional[str] = None


def _views(request: Request) -> DamageViews:
    return request.app.state.views


def _check_time(value: Optional[str]):
    try:
        parse_query_time(value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _check_category(value: str):
    try:
        canonical_category(value)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


async def _served(awaitable) -> Any:
    """Await a view, mapping dataset failures to 503."""
    try:
        return await awaitable
    except DatasetLoadError as e:
        logger.error(f"Dataset unavailable: {e}")
        raise HTTPException(status_code=503, detail=f"Dataset unavailable: {e.dataset}")


def _location_sort_key(location: str):
    return (0, int(location), "") if location.isdigit() else (1, 0, location)


def register_damage_routes(app: FastAPI):
    """Register damage_engine API endpoints on the FastAPI app."""

    @app.get("/api/v1/neighborhoods")
    async def list_neighborhoods(request: Request):
        """All neighborhood ids and names."""
        names = await _served(_views(request).store.get_neighborhood_names())
        return [
            {"id": loc, "name": names[loc]}
            for loc in sorted(names, key=_location_sort_key)
        ]

    @app.get("/api/v1/geography")
    async def get_geography(request: Request):
        """Neighborhood polygons with their centroids."""
        geography = await _served(_views(request).store.get_geography())
        return {
            "count": len(geography.features),
            "features": [
                {
                    "id": f.location,
                    "name": f.name,
                    "geometryType": f.geometry_type,
                    "coordinates": f.coordinates,
                    "centroid": list(f.centroid),
                }
                for f in geography.features
            ],
        }

    @app.get("/api/v1/neighborhoods/{location}/snapshot")
    async def neighborhood_snapshot(request: Request, location: str, time: Optional[str] = Query(None)):
        """Every category for one neighborhood at a point in time."""
        _check_time(time)
        views = _views(request)
        names = await _served(views.store.get_neighborhood_names())
        if location not in names:
            raise HTTPException(status_code=404, detail=f"Unknown neighborhood: {location}")

        snapshot = await _served(views.neighborhood_snapshot(location, time))
        return snapshot.to_dict()

    @app.get("/api/v1/categories/{category}/map")
    async def category_map(request: Request, category: str, time: Optional[str] = Query(None)):
        """Every neighborhood's estimate for one category."""
        _check_category(category)
        _check_time(time)
        entries = await _served(_views(request).category_map(category, time))
        return {
            "category": canonical_category(category),
            "time": time,
            "neighborhoods": [entry.to_dict() for entry in entries],
        }

    @app.get("/api/v1/comparison")
    async def category_comparison(
        request: Request,
        time: Optional[str] = Query(None),
        mode: str = Query("bsts"),
        location: Optional[str] = Query(None)
    ):
        """Distribution of reconciled values per category."""
        if mode not in COMPARISON_MODES:
            raise HTTPException(status_code=422, detail=f"mode must be one of {list(COMPARISON_MODES)}")
        _check_time(time)
        rows = await _served(_views(request).comparison(time, mode, location))
        return {
            "mode": mode,
            "time": time,
            "location": location,
            "categories": [row.to_dict() for row in rows],
        }

    @app.get("/api/v1/forecast/{location}/{category}")
    async def forecast(
        request: Request,
        location: str,
        category: str,
        start: Optional[str] = Query(None),
        end: Optional[str] = Query(None)
    ):
        """Aggregated BSTS series with per-point intervals."""
        _check_category(category)
        _check_time(start)
        _check_time(end)
        points = await _served(_views(request).forecast(location, category, start, end))
        return {
            "location": location,
            "category": canonical_category(category),
            "points": [p.to_dict() for p in points],
        }

    @app.get("/api/v1/insights")
    async def insights(
        request: Request,
        time: Optional[str] = Query(None),
        category: str = Query("shake_intensity")
    ):
        """City-wide summary at a point in time."""
        _check_category(category)
        _check_time(time)
        result = await _served(_views(request).insights(time, category))
        return result.to_dict()

    @app.get("/api/v1/categories/{category}/report-series")
    async def report_series(request: Request, category: str, location: Optional[str] = Query(None)):
        """Hourly max / mean of raw reports for one category."""
        _check_category(category)
        points = await _served(_views(request).report_series(category, location))
        return {
            "category": canonical_category(category),
            "location": location,
            "points": [p.to_dict() for p in points],
        }

    @app.get("/api/v1/neighborhoods/{location}/summary")
    async def neighborhood_summary(request: Request, location: str):
        """Raw-report statistics for one neighborhood."""
        views = _views(request)
        names = await _served(views.store.get_neighborhood_names())
        if location not in names:
            raise HTTPException(status_code=404, detail=f"Unknown neighborhood: {location}")

        summary = await _served(views.location_summary(location))
        return summary.to_dict()

    @app.post("/api/v1/reports/filter")
    async def filter_reports(request: Request, criteria: ReportFilter):
        """Raw reports matching categories, neighborhood, time range and certainty band."""
        for category in criteria.categories:
            _check_category(category)
        _check_time(criteria.start)
        _check_time(criteria.end)
        try:
            reports = await _served(_views(request).filtered_reports(
                criteria.categories,
                criteria.neighborhood,
                criteria.start,
                criteria.end,
                criteria.certainty_level,
            ))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {
            "count": len(reports),
            "reports": [r.to_dict() for r in reports],
        }

    @app.get("/api/v1/cache/stats")
    async def cache_stats(request: Request):
        """DataStore cache counters."""
        return _views(request).store.cache_info()

    logger.info("Damage engine routes registered at /api/v1/")
