"""
Brand store commerce actions service.

Core responsibilities:
- Answer the commerce platform's synchronous webhooks:
    * shipping rates (USPS removal, warehouse pickup, FedEx, courier, UPS + SurePost)
    * out-of-process tax (Vertex for US, Zonos elsewhere)
    * checkout rules keyed on the customer group (discounts, gift cards,
      payment methods, product access, payment validation)
- Export saved orders to the ERP as cXML and keep their status in sync:
    * export runs in the background, the event is acknowledged at once
    * a scheduled job polls the ERP for open orders and invoices/ships them
- Provide:
    * Health check.
    * Audit read-back of exported orders (protected by internal API key).
    * Storefront helpers: customer group name, product stock, UPS address validation.
- Security:
    * All secrets in .env, not in code.
    * Webhooks verified with the commerce RSA signature.
    * Internal endpoints protected by INTERNAL_API_KEY header.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from brandstore import checkout, inventory
from brandstore.config import Settings
from brandstore.erp import actions as order_actions
from brandstore.erp.dispatcher import ErpDispatcher, order_params
from brandstore.erp.reconciler import Reconciler
from brandstore.errors import BrandStoreError
from brandstore.http import HTTP_OK, action_error
from brandstore.services import Services
from brandstore.shipping import handle_rate_request
from brandstore.shipping.ups import UpsClient
from brandstore.state import KVStore
from brandstore.tax import handle_tax_request
from brandstore.webhook import handle_webhook

logger = logging.getLogger(__name__)


def _action_response(result: dict) -> JSONResponse:
    return JSONResponse(content=result.get("body"), status_code=result.get("statusCode") or HTTP_OK)


def _run_action(fn, *args) -> JSONResponse:
    """Run an action; BrandStoreError becomes its {success: false} body."""
    try:
        return _action_response(fn(*args))
    except BrandStoreError as e:
        logger.error("%s failed: %s", getattr(fn, "__name__", "action"), e)
        return _action_response(action_error(e.status_code, e.message))


def create_app(settings: Optional[Settings] = None,
               store: Optional[KVStore] = None,
               services: Optional[Services] = None,
               dispatcher: Optional[ErpDispatcher] = None) -> FastAPI:
    # ---------------------------------------------------
    # 1) Settings, state, shared clients
    # ---------------------------------------------------
    if services is None:
        settings = settings or Settings.from_env()
        store = store or KVStore(settings.state_db_path)
        services = Services(settings, store)
    settings = services.settings
    dispatcher = dispatcher or ErpDispatcher(services)
    reconciler = Reconciler(services)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # ---------------------------------------------------
    # 2) Background jobs
    # ---------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup and shutdown hook for background jobs.
        Runs a single APScheduler instance in this process.
        """
        sched = BackgroundScheduler(timezone=settings.order_time_zone)

        # ERP order status job
        if settings.reconcile_interval_minutes > 0:
            logger.info("Scheduling order status reconciliation every %s minutes",
                        settings.reconcile_interval_minutes)
            sched.add_job(
                reconciler.run,
                "interval",
                minutes=settings.reconcile_interval_minutes,
                max_instances=1,
                coalesce=True,
            )

        # Expired KV rows
        sched.add_job(
            services.store.purge_expired,
            "interval",
            hours=1,
            max_instances=1,
            coalesce=True,
        )

        sched.start()
        try:
            yield
        finally:
            sched.shutdown(wait=False)

    # Disable automatic docs in production for less attack surface
    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.services = services
    app.state.dispatcher = dispatcher

    async def check_internal_auth(x_internal_key: Optional[str] = Header(None)):
        """
        Dependency that enforces INTERNAL_API_KEY header on sensitive routes.
        Any request without the correct key gets HTTP 401.
        """
        if not settings.internal_api_key or x_internal_key != settings.internal_api_key:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return True

    async def _webhook(request: Request, handler, fallback_message: Optional[str] = None):
        raw = await request.body()
        reply = await run_in_threadpool(
            handle_webhook, dict(request.headers), raw, settings.commerce_webhooks_public_key,
            lambda body: handler(services, body), fallback_message,
        )
        return JSONResponse(content=reply, status_code=HTTP_OK)

    @app.get("/health")
    def health():
        """Simple health endpoint (can be left public for uptime checks)."""
        return {"ok": True}

    # ---------------------------------------------------
    # 3) Commerce webhooks (always HTTP 200)
    # ---------------------------------------------------

    @app.post("/webhooks/shipping/rates")
    async def wh_shipping_rates(request: Request):
        return await _webhook(request, handle_rate_request)

    @app.post("/webhooks/tax/calculate")
    async def wh_tax_calculate(request: Request):
        return await _webhook(request, handle_tax_request)

    @app.post("/webhooks/cart/discounts")
    async def wh_cart_discounts(request: Request):
        return await _webhook(request, checkout.remove_discounts, checkout.DISCOUNTS_FALLBACK_MESSAGE)

    @app.post("/webhooks/gift-card/redeem")
    async def wh_gift_card_redeem(request: Request):
        return await _webhook(request, checkout.validate_gift_card_redeem, checkout.GIFT_CARD_FALLBACK_MESSAGE)

    @app.post("/webhooks/payment/filter")
    async def wh_payment_filter(request: Request):
        return await _webhook(request, checkout.filter_payment_methods)

    @app.post("/webhooks/product/add-to-cart")
    async def wh_add_to_cart(request: Request):
        return await _webhook(request, checkout.validate_add_to_cart, checkout.ADD_TO_CART_FALLBACK_MESSAGE)

    @app.post("/webhooks/payment/validate")
    async def wh_payment_validate(request: Request):
        return await _webhook(request, checkout.validate_payment)

    # ---------------------------------------------------
    # 4) Order events (internal relay)
    # ---------------------------------------------------

    @app.post("/events/order/export")
    def ev_order_export(payload: dict, _=Depends(check_internal_auth)):
        """
        Sales order saved -> ERP export.
        - Validates the order and answers immediately.
        - cXML build, audit writes and the SOAP call run in the background.
        """
        try:
            dispatcher.submit(payload)
        except BrandStoreError as e:
            logger.error("Order export rejected: %s", e)
            return _action_response(action_error(e.status_code, e.message))
        return {"success": True, "message": "Order export started"}

    @app.post("/events/order/cost-center")
    def ev_order_cost_center(payload: dict, _=Depends(check_internal_auth)):
        return _run_action(order_actions.add_cost_center_comment, services, payload)

    @app.post("/events/order/invoice")
    def ev_order_invoice(payload: dict, _=Depends(check_internal_auth)):
        return _run_action(order_actions.create_invoice, services, payload)

    # ---------------------------------------------------
    # 5) Actions
    # ---------------------------------------------------

    @app.post("/actions/order-status/run")
    def act_order_status_run(_=Depends(check_internal_auth)):
        """Run one reconciliation pass now (same job the scheduler runs)."""
        return _run_action(reconciler.run)

    @app.get("/actions/order-params/{increment_id}")
    def act_order_params(increment_id: str, _=Depends(check_internal_auth)):
        return _run_action(order_params, services, increment_id)

    @app.post("/actions/customer/group-name")
    def act_customer_group_name(payload: dict):
        return _run_action(checkout.customer_group_name, services, payload)

    @app.post("/actions/ups/address-validation")
    def act_ups_address_validation(payload: dict):
        return _run_action(UpsClient(services).validate_address, payload.get("address"))

    @app.get("/actions/product/stock")
    def act_product_stock(sku: Optional[str] = None, product_type: Optional[str] = None,
                          child_sku: Optional[str] = None):
        return _run_action(inventory.product_stock, services, sku, product_type, child_sku)

    @app.post("/actions/inventory/update")
    async def act_inventory_update(request: Request, _=Depends(check_internal_auth)):
        """Body is the inventory CSV file content."""
        text = (await request.body()).decode("utf-8", errors="replace")
        records = inventory.parse_inventory_csv(text)
        return await run_in_threadpool(_run_action, inventory.update_inventory, services, records)

    return app


app = create_app()
