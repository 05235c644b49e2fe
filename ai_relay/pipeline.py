"""Handler pipeline shared by every endpoint.

A pipeline is an ordered list of async stages over one ``RequestContext``.
Stages enrich the context or raise a ``GatewayError``; the first stage that
returns a response ends the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from fastapi import Request, Response

from .config import Settings

logger = logging.getLogger("ai-relay.pipeline")


@dataclass
class RequestContext:
    request: Request
    settings: Settings
    route: str
    params: Any = None
    user_token: Optional[str] = None


Stage = Callable[[RequestContext], Awaitable[Optional[Response]]]


class Pipeline:
    def __init__(self, route: str, stages: Sequence[Stage]):
        if not stages:
            raise ValueError("pipeline needs at least one stage")
        self.route = route
        self.stages = tuple(stages)

    async def run(self, request: Request, settings: Settings) -> Response:
        ctx = RequestContext(request=request, settings=settings, route=self.route)
        for stage in self.stages:
            response = await stage(ctx)
            if response is not None:
                return response
        logger.error("pipeline for %s finished without a response", self.route)
        raise RuntimeError(f"pipeline for {self.route} produced no response")
