import argparse
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from eventagg_kit import ekit_logs
from eventagg_kit.ekit_cleanup import cleanup_old_events
from eventagg_kit.ekit_config import CLEANUP_DEFAULT_DAYS_TO_KEEP, SYNC_REQUESTS_PER_DAY, ConfigError, EventAggConfig
from eventagg_kit.ekit_event_list import EventListQuery, list_events
from eventagg_kit.ekit_limiter import TokenBucketLimiter
from eventagg_kit.ekit_services import EventAggServices, build_services
from eventagg_kit.ekit_webhooks import WebhookPayload, WebhookValidationError, verify_signature, verify_subscription


logger = logging.getLogger("http")


SERVER_CONFIG_ERROR = "Server configuration error"


def _ok(key: str, data: Any, status: int = 200) -> web.Response:
    return web.json_response({"success": True, key: data}, status=status)


def _err(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


def _services(request: web.Request) -> EventAggServices:
    return request.app["services"]


def _check_bearer(request: web.Request):
    """
    Returns an error response when the request is not allowed, None otherwise.
    """
    expected = _services(request).config.sync_token
    if not expected:
        logger.error("SYNC_TOKEN is not configured, refusing %s", request.path)
        return _err(SERVER_CONFIG_ERROR, 500)
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer ") or not hmac.compare_digest(header[len("Bearer "):].strip(), expected):
        logger.warning("unauthorized request to %s from %s", request.path, request.remote)
        return _err("Unauthorized", 401)
    return None


async def sync_events_handler(request: web.Request) -> web.Response:
    if (denied := _check_bearer(request)) is not None:
        return denied
    token = request.headers["Authorization"][len("Bearer "):].strip()
    if not request.app["sync_limiter"].check(token):
        return _err("Rate limit exceeded, try again later", 429)
    services = _services(request)
    try:
        summary = await services.syncer.sync_all_pages()
    except Exception as e:
        ekit_logs.alert(logger, "event sync run failed: %s %s", type(e).__name__, e)
        try:
            await services.mailer.send_event_sync_failed_alert(str(e), {"source": "sync_events_endpoint"})
        except Exception as e2:
            logger.error("sync failure alert not sent: %s %s", type(e2).__name__, e2)
        return _err("Event sync failed", 500)
    return _ok("data", summary.to_json_dict())


async def token_refresh_handler(request: web.Request) -> web.Response:
    if (denied := _check_bearer(request)) is not None:
        return denied
    services = _services(request)
    try:
        creds = services.config.app_credentials()
    except ConfigError as e:
        logger.error("token refresh not possible: %s", e)
        return _err(SERVER_CONFIG_ERROR, 500)
    try:
        summary = await services.refresher.refresh_expiring_tokens(creds)
    except Exception as e:
        ekit_logs.alert(logger, "token refresh run failed: %s %s", type(e).__name__, e)
        return _err("Token refresh failed", 500)
    return _ok("data", summary.to_json_dict())


async def token_health_handler(request: web.Request) -> web.Response:
    if (denied := _check_bearer(request)) is not None:
        return denied
    try:
        report = await _services(request).reporter.check_all_token_health()
    except Exception as e:
        logger.error("token health check failed: %s %s", type(e).__name__, e)
        return _err("Token health check failed", 500)
    return _ok("report", report.to_json_dict())


async def cleanup_events_handler(request: web.Request) -> web.Response:
    if (denied := _check_bearer(request)) is not None:
        return denied
    raw_days = request.query.get("daysToKeep", str(CLEANUP_DEFAULT_DAYS_TO_KEEP))
    try:
        days_to_keep = int(raw_days)
    except ValueError:
        days_to_keep = 0
    if days_to_keep < 1:
        return _err("Invalid daysToKeep parameter - must be >= 1", 400)
    dry_run = request.query.get("dryRun") == "true"
    result = await cleanup_old_events(_services(request).events, days_to_keep, dry_run)
    if not result.success:
        return _err("Failed to cleanup events", 500)
    return _ok("data", result.to_json_dict())


async def get_events_handler(request: web.Request) -> web.Response:
    try:
        query = EventListQuery.model_validate(dict(request.query))
    except ValidationError as e:
        logger.warning("invalid events query: %s", [err["msg"] for err in e.errors()[:3]])
        return _err("Invalid query parameters", 400)
    try:
        page = await list_events(_services(request).events, query)
    except Exception as e:
        logger.error("listing events failed: %s %s", type(e).__name__, e, exc_info=e)
        return _err("Failed to get events", 500)
    return web.json_response(page.to_json_dict())


async def webhook_verify_handler(request: web.Request) -> web.Response:
    try:
        challenge = verify_subscription(request.query, _services(request).config.webhook_verify_token)
    except WebhookValidationError as e:
        logger.warning("webhook subscription validation failed: %s", e)
        return web.json_response({"error": str(e)}, status=e.status)
    logger.info("webhook subscription verified")
    return web.Response(text=challenge)


async def webhook_post_handler(request: web.Request) -> web.Response:
    services = _services(request)
    app_secret = services.config.facebook_app_secret
    if not app_secret:
        logger.error("FACEBOOK_APP_SECRET is not configured, cannot verify webhooks")
        return _err(SERVER_CONFIG_ERROR, 500)
    raw = await request.read()
    signature = request.headers.get("X-Hub-Signature-256")
    if not signature:
        logger.warning("webhook without signature header")
        return web.json_response({"error": "Missing signature"}, status=401)
    if not verify_signature(raw, signature, app_secret):
        logger.warning("webhook with invalid signature")
        return web.json_response({"error": "Invalid signature"}, status=401)
    try:
        body = json.loads(raw)
    except ValueError:
        return web.json_response({"error": "Invalid JSON"}, status=400)
    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as e:
        logger.warning("invalid webhook payload: %s", e.errors()[:3])
        return web.json_response({"error": "Invalid webhook payload"}, status=400)
    try:
        result = await services.webhooks.process_payload(payload)
    except Exception as e:
        logger.error("webhook handler error: %s %s", type(e).__name__, e, exc_info=e)
        try:
            await services.mailer.send_event_sync_failed_alert(str(e), {"source": "facebook_webhook"})
        except Exception as e2:
            logger.error("webhook failure alert not sent: %s %s", type(e2).__name__, e2)
        return _err("Webhook processing failed", 500)
    return web.json_response(result.to_json_dict())


async def oauth_callback_handler(request: web.Request) -> web.Response:
    services = _services(request)
    try:
        creds = services.config.app_credentials()
    except ConfigError as e:
        logger.error("oauth callback not possible: %s", e)
        return _err(SERVER_CONFIG_ERROR, 500)
    outcome = await services.oauth.handle(
        creds,
        code=request.query.get("code"),
        error=request.query.get("error"),
        state=request.query.get("state"),
    )
    raise web.HTTPFound(outcome.redirect_url)


async def media_handler(request: web.Request) -> web.Response:
    doc = await _services(request).images.retrieve(request.match_info["bucket"], request.match_info["path"])
    if doc is None or "data" not in doc:
        raise web.HTTPNotFound()
    return web.Response(
        body=bytes(doc["data"]),
        content_type=doc.get("content_type") or "application/octet-stream",
        headers={"Cache-Control": "public, max-age=86400"},
    )


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({
        "success": True,
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


def make_app(services: EventAggServices) -> web.Application:
    app = web.Application()
    app["services"] = services
    app["sync_limiter"] = TokenBucketLimiter("sync-events", SYNC_REQUESTS_PER_DAY, 24 * 3600)
    app.router.add_post("/sync-events", sync_events_handler)
    app.router.add_post("/token-refresh", token_refresh_handler)
    app.router.add_get("/token-health", token_health_handler)
    app.router.add_post("/cleanup-events", cleanup_events_handler)
    app.router.add_get("/events", get_events_handler)
    app.router.add_get("/facebook-webhooks", webhook_verify_handler)
    app.router.add_post("/facebook-webhooks", webhook_post_handler)
    app.router.add_get("/oauth-callback", oauth_callback_handler)
    app.router.add_get("/media/{bucket}/{path:.+}", media_handler)
    app.router.add_get("/health", health_handler)
    return app


async def _on_startup(app: web.Application) -> None:
    await app["services"].ensure_indexes()


async def _on_cleanup(app: web.Application) -> None:
    await app["services"].close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Event aggregator HTTP endpoints: sync, token refresh, webhooks, oauth")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind")
    parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    args = parser.parse_args()
    ekit_logs.setup_logger()
    try:
        services = build_services(EventAggConfig.from_env())
    except ConfigError as e:
        print(f"ERROR: {e}")
        raise SystemExit(1) from e
    app = make_app(services)
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    web.run_app(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
