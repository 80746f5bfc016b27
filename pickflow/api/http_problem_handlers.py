# pickflow/api/http_problem_handlers.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pickflow.api.problem import make_problem, problem_from_allocation_error
from pickflow.services.errors import AllocationError

logger = logging.getLogger("pickflow")


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _ctx(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def _merge_context(out: Dict[str, Any], req: Request) -> Dict[str, Any]:
    merged = _ctx(req)
    if isinstance(out.get("context"), dict):
        merged.update(out["context"])
    out["context"] = merged
    return out


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    统一将 HTTPException.detail 翻译为 Problem 形状：
    - {"error_code","message",...}（已是 Problem）→ 补齐 http_status / trace_id / context
    - str / 其它 → http_error
    """
    status_code = int(exc.status_code)
    d = exc.detail

    if isinstance(d, dict) and "error_code" in d and "message" in d:
        out = dict(d)
        out.setdefault("http_status", status_code)
        out.setdefault("trace_id", _new_trace_id())
        return _merge_context(out, req)

    msg = str(d) if d is not None else "Request rejected"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=_ctx(req),
        details=[{"type": "state", "reason": msg}],
        trace_id=_new_trace_id(),
    )


def validation_details(raw: List[Any]) -> List[Dict[str, Any]]:
    details: List[Dict[str, Any]] = []
    for i, e in enumerate(raw):
        if not isinstance(e, dict):
            details.append({"type": "validation", "path": f"validation[{i}]", "reason": str(e)})
            continue
        loc = ".".join(str(p) for p in (e.get("loc") or ()) if p != "body")
        details.append(
            {
                "type": "validation",
                "path": loc or f"validation[{i}]",
                "reason": str(e.get("msg") or e.get("type") or "invalid"),
            }
        )
    return details


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal_error",
            message="Internal server error",
            context=_ctx(req),
            trace_id=trace_id,
            error="Internal server error",
        )
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(AllocationError)
    async def _allocation_exc(req: Request, exc: AllocationError):
        status, content = problem_from_allocation_error(exc)
        content["trace_id"] = _new_trace_id()
        _merge_context(content, req)
        if status >= 500:
            logger.error("ALLOCATION_FAILED[%s] %s: %s", content["trace_id"], exc.error_code, exc)
        else:
            logger.info("allocation rejected (%d %s): %s", status, exc.error_code, exc)
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="Invalid request parameters",
            context=_ctx(req),
            details=validation_details(exc.errors()),
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        content = _problem_from_http_exc(req, exc)
        return JSONResponse(status_code=int(exc.status_code), content=content)
