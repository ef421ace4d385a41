"""HTTP resume endpoints served next to the MCP transport.

Approval links, the authenticated API resume, inbound webhooks and
client-side pause submission all arrive over plain HTTP, so they are
registered with @mcp.custom_route() and only served on the sse and
streamable-http transports.

Routes run outside any MCP session and reach the engine through
server.shared_context. Every ResumeError maps to its status_code with
the error's to_response() body.
"""

import json
import logging
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse

from .engine import ResumeError
from .engine.auth import API_KEY_HEADER, WEBHOOK_SECRET_HEADER
from .server import mcp, shared_context

logger = logging.getLogger(__name__)

SESSION_COOKIE = "workflows_session"


def _error(e: ResumeError) -> JSONResponse:
    if e.status_code >= 500:
        logger.error(f"Resume request failed: {e.message}")
    return JSONResponse(e.to_response(), status_code=e.status_code)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=400)


async def _json_body(request: Request) -> dict[str, Any] | None:
    """Decode a JSON object body; None when the body is not one."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return body if isinstance(body, dict) else None


def _session_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)


# =============================================================================
# Human approval
# =============================================================================


@mcp.custom_route("/approve/{token}", methods=["GET"])
@mcp.custom_route("/api/approval/{token}", methods=["GET", "POST"])
async def approval(request: Request) -> JSONResponse:
    """GET shows the pending approval, POST {action, formData} approves or rejects it.

    /approve/{token} is the link handed out in pause responses and notifications.
    """
    token = request.path_params["token"]
    app_ctx = await shared_context.get()
    try:
        if request.method == "GET":
            return JSONResponse({"success": True, **await app_ctx.coordinator.get_approval(token)})

        body = await _json_body(request)
        if body is None:
            return _bad_request("Invalid JSON payload")
        result = await app_ctx.coordinator.approve(
            token, body.get("action", ""), body.get("formData")
        )
        return JSONResponse(result)
    except ResumeError as e:
        return _error(e)


@mcp.custom_route("/api/approval/{token}/chat", methods=["POST"])
async def approval_chat(request: Request) -> JSONResponse:
    """POST {message, chatHistory?, content?} to ask about the content under review."""
    token = request.path_params["token"]
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON payload")

    app_ctx = await shared_context.get()
    try:
        result = await app_ctx.approval_chat.reply(
            token,
            body.get("message", ""),
            body.get("chatHistory"),
            body.get("content"),
        )
        return JSONResponse(result)
    except ResumeError as e:
        return _error(e)


# =============================================================================
# API resume
# =============================================================================


@mcp.custom_route(
    "/api/workflows/{workflow_id}/executions/resume/{execution_id}", methods=["POST"]
)
async def resume_execution(request: Request) -> JSONResponse:
    """Resume with a JSON payload; authenticated by x-api-key or session."""
    app_ctx = await shared_context.get()
    try:
        result = await app_ctx.coordinator.resume_api(
            request.path_params["workflow_id"],
            request.path_params["execution_id"],
            await request.body(),
            api_key=request.headers.get(API_KEY_HEADER),
            session_token=_session_token(request),
        )
        return JSONResponse(result)
    except ResumeError as e:
        return _error(e)


# =============================================================================
# Webhooks
# =============================================================================


@mcp.custom_route("/api/webhooks/resume/{workflow_id}/{execution_id}", methods=["POST"])
@mcp.custom_route(
    "/api/webhooks/resume/{workflow_id}/{execution_id}/{block_id}", methods=["POST"]
)
async def resume_webhook(request: Request) -> JSONResponse:
    """Deliver an inbound webhook; the secret travels in x-sim-secret."""
    app_ctx = await shared_context.get()
    try:
        result = await app_ctx.coordinator.resume_webhook(
            request.path_params["workflow_id"],
            request.path_params["execution_id"],
            await request.body(),
            secret=request.headers.get(WEBHOOK_SECRET_HEADER),
            block_id=request.path_params.get("block_id"),
        )
        return JSONResponse(result)
    except ResumeError as e:
        return _error(e)


# =============================================================================
# Client-side pause submission
# =============================================================================


@mcp.custom_route("/api/execution/pause", methods=["POST"])
async def pause_execution(request: Request) -> JSONResponse:
    """Store a pause produced by an execution that ran in the client."""
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON payload")

    app_ctx = await shared_context.get()
    try:
        result = await app_ctx.coordinator.pause_from_client(
            body, session_token=_session_token(request)
        )
        return JSONResponse(result)
    except ResumeError as e:
        return _error(e)


__all__ = [
    "approval",
    "approval_chat",
    "pause_execution",
    "resume_execution",
    "resume_webhook",
]
