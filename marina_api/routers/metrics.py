"""
Metrics Router - Prometheus Metrics Endpoint
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from ..utils.metrics import format_prometheus_metrics

router = APIRouter(prefix="/metrics", tags=["Metrics"])


@router.get("")
async def get_metrics():
    """Metrics in Prometheus text format for scraping."""
    return PlainTextResponse(
        content=format_prometheus_metrics(),
        media_type="text/plain; charset=utf-8"
    )
