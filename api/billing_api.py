"""
Billing API.

Provides the HTTP endpoints for starting PayFast payments, receiving ITN
callbacks and reading the caller's plan.
"""

import logging
from datetime import datetime, timezone

from aiohttp import web

from config import Config
from database.db import Database
from errors import BadSignature, BillingError, TransientStorageError
from models.account import Account, Plan
from services.auth_client import AuthClient, bearer_token
from services.initiation_service import PaymentInitiationService
from services.notification_verifier import NotificationVerifier
from services.signature import build_canonical_string, sign

logger = logging.getLogger(__name__)

RESPONSE_FORMATS = ('fields', 'redirect', 'form')


def error_response(error: BillingError) -> web.Response:
    """Map a billing error onto its HTTP status and JSON body."""
    return web.json_response(error.to_dict(), status=error.status)


class BillingAPI:
    """
    REST API for billing.

    Endpoints:
    - POST /api/payfast/start - Start a PayFast payment
    - POST /api/payfast/itn - PayFast ITN callback
    - GET /api/billing/plan - Caller's effective plan
    - GET /api/payfast/debug - Configuration presence (debug only)
    - GET /api/payfast/debug-signature - Sample signature (debug only)
    - GET /api/health - Health check
    """

    def __init__(
        self,
        config: Config,
        db: Database,
        auth_client: AuthClient
    ):
        """
        Initialize the API.

        Args:
            config: Service configuration
            db: Account store
            auth_client: Identity provider client
        """
        self.config = config
        self.db = db
        self.auth_client = auth_client
        self.initiation_service = PaymentInitiationService(config, auth_client, db)
        self.notification_verifier = NotificationVerifier(config, db)

    def setup_routes(self, app: web.Application) -> None:
        """
        Set up API routes.

        Args:
            app: aiohttp web application
        """
        app.router.add_post('/api/payfast/start', self.start_payment)
        app.router.add_post('/api/payfast/itn', self.payfast_itn)
        app.router.add_get('/api/billing/plan', self.get_plan)
        app.router.add_get('/api/health', self.health_check)

        if self.config.payfast.debug_routes:
            app.router.add_get('/api/payfast/debug', self.debug_config)
            app.router.add_get('/api/payfast/debug-signature', self.debug_signature)

    async def start_payment(self, request: web.Request) -> web.Response:
        """
        Start a PayFast payment for the authenticated caller.

        Request body (optional):
        {
            "format": "fields" | "redirect" | "form"
        }
        """
        response_format = request.query.get('format')
        if not response_format and request.can_read_body:
            try:
                data = await request.json()
            except Exception:
                return web.json_response(
                    {"error": "Invalid JSON body"},
                    status=400
                )
            if isinstance(data, dict):
                response_format = data.get('format')

        response_format = response_format or 'fields'
        if response_format not in RESPONSE_FORMATS:
            return web.json_response(
                {"error": f"format must be one of: {', '.join(RESPONSE_FORMATS)}"},
                status=400
            )

        try:
            intent = await self.initiation_service.initiate(
                request.headers.get('Authorization')
            )
        except BillingError as e:
            logger.warning(f"PayFast start failed: {e.message}")
            return web.json_response({"error": e.message}, status=e.status)

        if response_format == 'redirect':
            return web.json_response({"redirectUrl": intent.redirect_url()})
        if response_format == 'form':
            return web.Response(text=intent.to_form_html(), content_type='text/html')
        return web.json_response(intent.to_dict())

    async def payfast_itn(self, request: web.Request) -> web.Response:
        """
        Receive a PayFast ITN callback.

        The gateway treats anything but 200 as a failed delivery and retries.
        """
        try:
            form = await request.post()
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Rejected malformed ITN body: {e}")
            return error_response(BadSignature("Malformed notification"))

        try:
            result = await self.notification_verifier.verify(form)
        except BillingError as e:
            return error_response(e)

        return web.json_response(result.to_dict())

    async def get_plan(self, request: web.Request) -> web.Response:
        """Get the caller's effective plan."""
        try:
            token = bearer_token(request.headers.get('Authorization'))
            identity = await self.auth_client.verify_token(token)
            try:
                row = await self.db.get_user(identity.user_id)
            except Exception as e:
                logger.error(f"Error loading user {identity.user_id}: {e}")
                raise TransientStorageError("Failed to load account") from e
        except BillingError as e:
            return web.json_response({"error": e.message}, status=e.status)

        if not row:
            return web.json_response({"plan": Plan.FREE.value, "proUntil": None})

        account = Account.from_dict(row)
        return web.json_response(account.to_public_dict(datetime.now(timezone.utc)))

    async def debug_config(self, request: web.Request) -> web.Response:
        """Report which PayFast settings are present, never their values."""
        payfast = self.config.payfast
        return web.json_response({
            "hasMerchantId": bool(payfast.merchant_id),
            "hasMerchantKey": bool(payfast.merchant_key),
            "hasPassphrase": bool(payfast.passphrase),
            "appUrl": "set" if self.config.app.base_url else "missing",
            "processUrl": payfast.process_url or "missing",
            "missing": self.config.missing_payfast_settings()
        })

    async def debug_signature(self, request: web.Request) -> web.Response:
        """Show the canonical string and signature for a fixed sample payment."""
        payfast = self.config.payfast
        app_url = self.config.app.base_url

        fields = {
            "merchant_id": payfast.merchant_id,
            "merchant_key": payfast.merchant_key,
            "return_url": f"{app_url}/billing/success",
            "cancel_url": f"{app_url}/pricing",
            "notify_url": payfast.notify_url,
            "m_payment_id": "1234567890",
            "amount": payfast.amount,
            "item_name": payfast.item_name,
            "custom_str1": "TEST_USER_ID",
        }

        base = build_canonical_string(fields, payfast.signing.excluded_keys())
        to_hash = f"{base}&passphrase=***" if payfast.passphrase else base

        return web.json_response({
            "baseString": base,
            "toHash": to_hash,
            "signature": sign(base, payfast.passphrase, payfast.signing.encode_passphrase),
            "hasPassphrase": bool(payfast.passphrase),
            "policy": payfast.signing.to_dict()
        })

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "healthy",
            "service": self.config.service.name
        })


def create_app(
    config: Config,
    db: Database,
    auth_client: AuthClient
) -> web.Application:
    """
    Create and configure the aiohttp web application.

    Args:
        config: Service configuration
        db: Account store
        auth_client: Identity provider client

    Returns:
        Configured aiohttp Application
    """
    app = web.Application()

    # Create API handler
    api = BillingAPI(
        config=config,
        db=db,
        auth_client=auth_client
    )

    # Setup routes
    api.setup_routes(app)

    # Add CORS middleware
    @web.middleware
    async def cors_middleware(request, handler):
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            response = await handler(request)

        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
        return response

    app.middlewares.append(cors_middleware)

    # Error handling middleware
    @web.middleware
    async def error_middleware(request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"Unhandled error: {e}", exc_info=True)
            return web.json_response(
                {"ok": False, "error": "Internal server error"},
                status=500
            )

    app.middlewares.append(error_middleware)

    return app
