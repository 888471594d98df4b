"""
Health endpoints for the orders service.

``/health/live`` only proves the process answers. ``/health/ready`` runs the
dependency checks and returns 503 when any of them fails; a degraded check
(cache down, low memory) keeps the service ready but is reported as ``warn``.
"""

import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

import psutil
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine

from .logging_config import get_logger

logger = get_logger(__name__)

MEMORY_FAIL_MB = 100
MEMORY_WARN_MB = 500

class HealthStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"

def _check(state: HealthStatus, component: str, **details: Any) -> Dict[str, Any]:
    return {"status": state.value, "component": component, **details}

class ServiceHealth:
    def __init__(self, service_name: str, version: str, engine: Engine,
                 cache_ping: Optional[Callable[[], bool]] = None):
        self.service_name = service_name
        self.version = version
        self.engine = engine
        self.cache_ping = cache_ping
        self.started = time.monotonic()
        self.readiness_runs = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health")
        def health() -> Dict[str, Any]:
            return {
                "status": HealthStatus.PASS.value,
                "service": self.service_name,
                "version": self.version,
                "release": os.getenv("RELEASE_ID", "unknown"),
            }

        @router.get("/health/live")
        def live() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def ready() -> JSONResponse:
            checks = self.run_checks()
            overall = self.calculate_overall_status(checks)
            code = status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK
            return JSONResponse(status_code=code, content={
                "status": overall.value,
                "service": self.service_name,
                "checks": checks,
                "checked_at": datetime.now(timezone.utc).isoformat(),
            })

        @router.get("/metrics")
        def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            with process.oneshot():
                memory = process.memory_info()
                threads = process.num_threads()
                cpu = process.cpu_percent(interval=None)
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": round(time.monotonic() - self.started, 1),
                "readiness_runs": self.readiness_runs,
                "db_pool": self.engine.pool.status(),
                "process": {"rss_bytes": memory.rss, "threads": threads, "cpu_percent": cpu},
            }

        return router

    def run_checks(self) -> Dict[str, Dict[str, Any]]:
        self.readiness_runs += 1
        checks = {"database": self.check_database()}
        if self.cache_ping is not None:
            checks["settings_cache"] = self.check_cache()
        checks["memory"] = self.check_memory()
        return checks

    def check_database(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database readiness check failed: {e}")
            return _check(HealthStatus.FAIL, "database", error=str(e))
        return _check(HealthStatus.PASS, "database", latency_ms=round((time.perf_counter() - started) * 1000, 2))

    def check_cache(self) -> Dict[str, Any]:
        # Settings fall back to the in-process cache, so Redis problems only degrade
        try:
            if self.cache_ping():
                return _check(HealthStatus.PASS, "redis")
            return _check(HealthStatus.WARN, "redis", detail="not configured, using in-process cache")
        except Exception as e:
            return _check(HealthStatus.WARN, "redis", error=str(e))

    def check_memory(self) -> Dict[str, Any]:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        if available_mb < MEMORY_FAIL_MB:
            state = HealthStatus.FAIL
        elif available_mb < MEMORY_WARN_MB:
            state = HealthStatus.WARN
        else:
            state = HealthStatus.PASS
        return _check(state, "system", available_mb=round(available_mb, 1))

    @staticmethod
    def calculate_overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        states = {check["status"] for check in checks.values()}
        if HealthStatus.FAIL.value in states:
            return HealthStatus.FAIL
        if HealthStatus.WARN.value in states:
            return HealthStatus.WARN
        return HealthStatus.PASS
