"""Live web search through the Serper API (mock results when no key is configured)."""

import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from taskrelay.config import settings
from taskrelay.core.protocol import emit_file
from taskrelay.tools import (
    ToolOptions,
    register_tool,
)

logger = logging.getLogger(__name__)


class SearchWebArgs(BaseModel):
    """Arguments of ``search_web``."""

    query: str = Field(..., description="Search query string")
    max_results: int = Field(5, ge=1, le=10, description="Max number of results (1-10)")


class SearchHit(BaseModel):
    """One organic search result."""

    title: str = ""
    link: str = ""
    snippet: str = ""
    date: Optional[str] = None


async def search_web_api(query: str, max_results: int = 5) -> Dict[str, Any]:
    """
    Query Serper for results from the past day.

    Returns
    -------
    dict
        ``{"provider": ..., "query": ..., "results": [SearchHit, ...]}`` with hits as dicts.

    Raises
    ------
    httpx.HTTPStatusError
        If Serper answers with a non-2xx status.
    """
    if not settings.SERPER_API_KEY:
        logger.warning("[search] Missing SERPER_API_KEY - returning mock results")
        return {
            "provider": "mock",
            "query": query,
            "results": [
                SearchHit(
                    title="No SERPER_API_KEY set",
                    link="https://serper.dev",
                    snippet=f'Searched for "{query}"',
                ).model_dump(exclude_none=True)
            ],
        }

    payload = {"q": query, "num": max_results, "gl": "us", "hl": "en", "tbs": "qdr:d"}
    headers = {"X-API-KEY": settings.SERPER_API_KEY, "Content-Type": "application/json"}
    async with httpx.AsyncClient(timeout=30.0) as client:
        resp = await client.post(settings.SERPER_ENDPOINT, json=payload, headers=headers)
        resp.raise_for_status()
        data = resp.json()

    hits: List[Dict[str, Any]] = [
        SearchHit.model_validate(item).model_dump(exclude_none=True)
        for item in data.get("organic", [])
    ]
    logger.debug("Serper returned %d results for %r", len(hits), query)
    return {"provider": "serper", "query": query, "results": hits}


@register_tool("search_web", SearchWebArgs)
async def search_web(args: SearchWebArgs, options: ToolOptions) -> Dict[str, Any]:
    """
    Search the live web for recent info. Use for news, updates, or when the user asks for
    'latest'. Returns concise results.
    """
    options.emit(f"[SEARCH] {args.query}")
    result = await search_web_api(args.query, max_results=args.max_results)
    emit_file(options.emit, "search_web", "search_result.json", json.dumps(result, indent=2))
    return result
