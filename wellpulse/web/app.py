"""
FastAPI Web Application - WellPulse Messaging API
==================================================

Two entry points into the pipeline:
- POST /api/broadcasts/dispatch : send a check-in, poll or announcement
- /webhooks/twilio              : inbound replies from Twilio
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from ..application import (
    BroadcastService,
    DispatchEngine,
    InboundWebhookHandler,
    RecipientResolver,
    ResponseRouter,
)
from ..domain.errors import (
    BroadcastNotFound,
    BroadcastNotSendable,
    NoEligibleRecipients,
    NoValidContacts,
)
from ..infrastructure.config import Settings, get_settings
from ..infrastructure.llm import SentimentService
from ..infrastructure.messaging import SIGNATURE_HEADER, MessagingProvider, TwilioProvider
from ..infrastructure.persistence import Database, init_database

logger = logging.getLogger(__name__)


class DispatchRequest(BaseModel):
    broadcast_id: str
    organization_id: str


def build_services(settings: Settings, db: Database, provider: Optional[MessagingProvider] = None) -> dict:
    """Wire the pipeline from one settings object."""
    provider = provider or TwilioProvider(settings.twilio)
    prefix = settings.twilio.channel_prefix

    resolver = RecipientResolver(db)
    engine = DispatchEngine(
        db,
        provider,
        from_address=settings.twilio.broadcast_number,
        settings=settings.dispatch,
        channel_prefix=prefix,
    )
    router = ResponseRouter(
        db,
        classifier=SentimentService(settings.llm),
        channel_prefix=prefix,
        store_unmatched_as_feedback=settings.dispatch.store_unmatched_as_feedback,
    )
    webhook = InboundWebhookHandler(
        router,
        provider,
        db,
        auth_token=settings.twilio.auth_token,
        reply_from=settings.twilio.reply_from,
        channel_prefix=prefix,
        send_correction_hints=settings.dispatch.send_correction_hints,
    )
    return {
        "broadcasts": BroadcastService(db, resolver, engine),
        "webhook": webhook,
    }


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[MessagingProvider] = None,
    db: Optional[Database] = None,
) -> FastAPI:
    """Application factory. Tests pass their own settings, database and provider."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or get_settings()
        for issue in app_settings.validate():
            logger.warning(issue)

        database = db or init_database(app_settings.database.path)
        app.state.settings = app_settings
        app.state.services = build_services(app_settings, database, provider)
        logger.info("WellPulse services ready")
        yield

    app = FastAPI(title="WellPulse", description="Employee wellness messaging pipeline", lifespan=lifespan)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/broadcasts/dispatch")
    def dispatch_broadcast(payload: DispatchRequest, request: Request):
        if not request.app.state.settings.twilio.is_configured:
            logger.error("Missing Twilio credentials in environment")
            return JSONResponse(
                {"success": False, "error": "Twilio credentials not configured"}, status_code=500
            )

        service: BroadcastService = request.app.state.services["broadcasts"]
        try:
            result = service.send(payload.broadcast_id, payload.organization_id)
        except BroadcastNotFound as e:
            logger.error(f"Broadcast lookup failed: {e}")
            return JSONResponse({"success": False, "error": "Broadcast not found"}, status_code=404)
        except (BroadcastNotSendable, NoEligibleRecipients, NoValidContacts) as e:
            logger.info(f"Dispatch refused for {payload.broadcast_id}: {e}")
            return JSONResponse({"success": False, "error": str(e)}, status_code=400)
        except Exception as e:
            logger.exception(f"Error dispatching {payload.broadcast_id}: {e}")
            return JSONResponse({"success": False, "error": str(e)}, status_code=500)

        return result.to_dict(service.noun_for(payload.broadcast_id))

    @app.api_route("/webhooks/twilio", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def twilio_webhook(request: Request):
        handler: InboundWebhookHandler = request.app.state.services["webhook"]
        webhook_url = request.app.state.settings.twilio.webhook_url or str(request.url)

        params = {}
        if request.method == "POST":
            form = await request.form()
            params = {key: str(value) for key, value in form.items()}

        reply = await asyncio.to_thread(
            handler.handle,
            request.method,
            webhook_url,
            params,
            request.headers.get(SIGNATURE_HEADER),
        )
        return Response(content=reply.body, status_code=reply.status_code, media_type=reply.content_type)

    return app


app = create_app()
