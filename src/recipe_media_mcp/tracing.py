"""Optional MLflow tracing for the media tools.

Every MCP tool is wrapped by ``trace()`` and becomes a ``TOOL`` root span.
Gemini is only called for prompt enrichment, so ``mlflow.gemini.autolog()``
is switched on only when ``RECIPE_MEDIA_ENRICH_PROMPTS`` is set; provider
polls and storage uploads are plain httpx and show up inside the tool span.

Guarded import — the server runs fine without ``mlflow-tracing`` installed.

Env vars (all optional):
    MLFLOW_TRACKING_URI: Where to store traces. Empty = tracing disabled.
    MLFLOW_EXPERIMENT_NAME: Experiment name (default ``recipe-media-mcp``).
    RECIPE_MEDIA_TRACING_ENABLED: Set to ``"false"`` to force-disable even with a URI.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

try:
    import mlflow
    import mlflow.gemini

    _HAS_MLFLOW = True
except ImportError:
    _HAS_MLFLOW = False


def is_enabled() -> bool:
    """Return True when mlflow-tracing is installed and not explicitly disabled."""
    if not _HAS_MLFLOW:
        return False
    from .config import get_config

    return get_config().tracing_enabled


def trace(*, name: str, span_type: str = "TOOL") -> Callable[[Callable], Callable]:
    """Span decorator for tool entrypoints; identity when tracing is off.

    Usage::

        @trace(name="media_generate_step_videos", span_type="TOOL")
        async def media_generate_step_videos(...): ...
    """
    if not is_enabled():
        return lambda f: f
    return mlflow.trace(name=name, span_type=span_type)


def setup() -> None:
    """Configure MLflow tracking. No-op when tracing is disabled.

    Failures are logged; tracing never prevents the server from starting.
    """
    if not is_enabled():
        return

    from .config import get_config

    cfg = get_config()
    try:
        mlflow.set_tracking_uri(cfg.mlflow_tracking_uri)
        mlflow.set_experiment(cfg.mlflow_experiment_name)
        if cfg.enrich_prompts:
            mlflow.gemini.autolog()
        logger.info(
            "MLflow tracing enabled (uri=%s, experiment=%s, gemini_autolog=%s)",
            cfg.mlflow_tracking_uri, cfg.mlflow_experiment_name, cfg.enrich_prompts,
        )
    except Exception:
        logger.warning("MLflow tracing setup failed — continuing without tracing", exc_info=True)


def shutdown() -> None:
    """Flush pending async traces."""
    if not is_enabled():
        return

    try:
        mlflow.flush_trace_async_logging()
        logger.info("MLflow traces flushed")
    except Exception:
        logger.warning("MLflow trace flush failed", exc_info=True)
