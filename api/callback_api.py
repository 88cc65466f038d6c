"""
M-Pesa Callback API.

Receives STK push result callbacks and hands them to the reconciler.
"""

import json
import logging
from typing import Optional

from aiohttp import web

from config import config
from models.notification import MalformedPayloadError, normalize
from services.reconciler import PaymentReconciler

logger = logging.getLogger(__name__)

INVALID_CALLBACK_TEXT = 'Invalid Callback format'


class CallbackAPI:
    """
    HTTP endpoints for the callback server.

    Endpoints:
    - POST /api/callback - STK push result callback (path configurable)
    - GET / - Liveness banner
    - GET /api/health - Health check
    - GET /api/stats - Reconciliation statistics
    """

    def __init__(self, reconciler: PaymentReconciler, callback_path: Optional[str] = None):
        """
        Initialize the API.

        Args:
            reconciler: Reconciler that settles orders
            callback_path: Route for gateway callbacks. Uses config if not provided.
        """
        self.reconciler = reconciler
        self.callback_path = callback_path or config.api.callback_path

    def setup_routes(self, app: web.Application) -> None:
        """
        Set up API routes.

        Args:
            app: aiohttp web application
        """
        app.router.add_post(self.callback_path, self.handle_callback)
        app.router.add_get('/', self.index)
        app.router.add_get('/api/health', self.health_check)
        app.router.add_get('/api/stats', self.get_stats)

    async def handle_callback(self, request: web.Request) -> web.Response:
        """
        Handle an STK push result callback.

        Only a malformed envelope is rejected. Once the envelope is valid the
        gateway always gets 200, whatever the reconciliation outcome, so that
        business outcomes are not mistaken for delivery failures.
        """
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Rejected callback with a non-JSON body")
            return web.Response(text=INVALID_CALLBACK_TEXT, status=400)

        logger.info("M-Pesa callback received")
        logger.debug(json.dumps(data, indent=2, default=str))

        try:
            notification = normalize(data)
        except MalformedPayloadError as e:
            logger.warning(f"Rejected malformed callback: {e}")
            return web.Response(text=INVALID_CALLBACK_TEXT, status=400)

        outcome = await self.reconciler.reconcile(notification)
        logger.info(
            f"Callback {notification.checkout_request_id} reconciled: "
            f"{outcome.status.value}"
            + (f" (order {outcome.order_id})" if outcome.order_id else "")
        )

        return web.json_response({"result": "received"})

    async def index(self, request: web.Request) -> web.Response:
        """Liveness banner."""
        return web.Response(text='M-Pesa Callback Server is Running')

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "healthy",
            "service": config.service.name
        })

    async def get_stats(self, request: web.Request) -> web.Response:
        """Get reconciliation statistics."""
        return web.json_response(self.reconciler.get_stats())


def create_app(
    reconciler: PaymentReconciler,
    callback_path: Optional[str] = None
) -> web.Application:
    """
    Create and configure the aiohttp web application.

    Args:
        reconciler: Reconciler that settles orders
        callback_path: Optional override for the callback route

    Returns:
        Configured aiohttp Application
    """
    app = web.Application()

    # Create API handler
    api = CallbackAPI(reconciler=reconciler, callback_path=callback_path)

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
                {"error": "Internal server error"},
                status=500
            )

    app.middlewares.append(error_middleware)

    return app
