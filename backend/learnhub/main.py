import json
import logging
import time
import uuid
from datetime import datetime

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from learnhub.core.config import settings
from learnhub.routers import admin, auth, certificates, courses, faq, health, leader, progress, quizzes


def create_app() -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    app = FastAPI(title="LearnHub API", version="1.0.0")

    logger = logging.getLogger("learnhub")

    allow_origins = [o.strip() for o in str(settings.cors_allow_origins or "").split(",") if o.strip()]
    if "*" in allow_origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not include '*' when allow_credentials=true")

    is_prod = (settings.app_env or "").strip().lower() in {"prod", "production"}
    if is_prod:
        allow_methods = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
        allow_headers = ["authorization", "content-type", "x-request-id"]
    else:
        allow_methods = ["*"]
        allow_headers = ["*"]

    def _error_payload(*, rid: str | None, error_code: str, error_message: str) -> dict:
        return {
            "ok": False,
            "error": error_message,
            "error_code": error_code,
            "error_message": error_message,
            "request_id": rid,
        }

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid
        status_code: int | None = None
        try:
            if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
                origin = (request.headers.get("origin") or "").strip()
                if origin and origin not in allow_origins:
                    response = JSONResponse(
                        status_code=403,
                        content=_error_payload(rid=rid, error_code="forbidden", error_message="invalid origin"),
                    )
                else:
                    response = await call_next(request)
            else:
                response = await call_next(request)
            status_code = int(getattr(response, "status_code", 0) or 0)
        except Exception:
            status_code = 500
            raise
        finally:
            path = getattr(getattr(request, "url", None), "path", "")
            if not path.startswith("/health"):
                logger.info(
                    json.dumps(
                        {
                            "ts": datetime.utcnow().isoformat(),
                            "rid": rid,
                            "user_id": getattr(getattr(request, "state", None), "user_id", None),
                            "method": request.method,
                            "path": path,
                            "status": status_code,
                            "duration_ms": int((time.perf_counter() - t0) * 1000),
                        },
                        ensure_ascii=False,
                    )
                )
        response.headers["X-Request-ID"] = rid

        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        if is_prod:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    def _request_id(request: Request) -> str | None:
        rid = getattr(getattr(request, "state", None), "request_id", None)
        rid = str(rid or "").strip()
        return rid or None

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        if isinstance(detail, dict):
            error_code = str(detail.get("error_code") or "http_error")
            error_message = str(detail.get("error_message") or detail.get("detail") or "request failed")
        else:
            code = int(exc.status_code)
            error_code = {401: "unauthorized", 403: "forbidden", 404: "not_found", 429: "rate_limited"}.get(
                code, "http_error"
            )
            error_message = str(detail or "request failed")

        return JSONResponse(
            status_code=int(exc.status_code),
            content=_error_payload(rid=_request_id(request), error_code=error_code, error_message=error_message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.exception("unhandled exception", extra={"rid": rid})
        return JSONResponse(
            status_code=500,
            content=_error_payload(rid=rid, error_code="internal_error", error_message="internal server error"),
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=allow_methods,
        allow_headers=allow_headers,
    )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(courses.router)
    app.include_router(quizzes.router)
    app.include_router(progress.router)
    app.include_router(certificates.router)
    app.include_router(faq.router)
    app.include_router(admin.router)
    app.include_router(leader.router)

    return app


app = create_app()
