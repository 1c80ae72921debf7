import json
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from jinja2 import DictLoader, Environment, select_autoescape
from loguru import logger

from .. import config
from ..deps import get_adapter, get_db, get_http
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from ..model import orders
from ..payments import MockPay, PaymentAdapter

router = APIRouter(tags=["payments"])

TEMPLATES = {
    "mockpay.html": r"""
    <html>
      <head>
        <meta charset='utf-8'/>
        <title>MockPay – Retro Hall Checkout</title>
        <style>
          body { font-family: system-ui, -apple-system, Segoe UI, Roboto, sans-serif; margin: 2rem; }
          .wrap { max-width: 640px; }
          button { padding: .6rem 1rem; margin-right: .5rem; }
          .meta { color:#555; }
          .card { border:1px solid #ddd; padding: 1rem; border-radius: 12px; }
        </style>
      </head>
      <body>
        <div class="wrap">
          <h2>MockPay – Retro Hall Checkout</h2>
          <div class="card">
            <p><strong>Order:</strong> {{ order_id }}</p>
            <p><strong>Status:</strong> {{ status }}</p>
            <p><strong>Total:</strong> {{ currency|upper }} {{ total }}</p>
            <form method="post" action="/mockpay/{{ psid }}/emit">
              <button name="t" value="completed">Pay</button>
              <button name="t" value="expired">Let it expire</button>
            </form>
            <p class="meta">This page simulates a hosted checkout. Clicking a button sends a signed webhook to <code>{{ webhook_url }}</code>.</p>
          </div>
        </div>
      </body>
    </html>
    """,
}

env = Environment(
    loader=DictLoader(TEMPLATES), autoescape=select_autoescape(["html"])
)


def render_template(name: str, **ctx) -> HTMLResponse:
    tpl = env.get_template(name)
    return HTMLResponse(tpl.render(**ctx))


def app_return_url(order_id: str, result: str, session_id: str) -> str:
    query = urlencode({
        "order_id": order_id, "result": result, "session_id": session_id,
    })
    return f"{config.APP_SCHEME}://orders/return?{query}"


# ----------------------------
# Webhook endpoint (shared for Mock/Stripe)
# ----------------------------
@router.post("/payments/webhook")
async def payments_webhook(
    request: Request,
    db: GatedAsyncSession = Depends(get_db),
    adapter: PaymentAdapter = Depends(get_adapter),
):
    payload = await request.body()
    headers = dict(request.headers)

    event = adapter.verify_webhook(payload, headers)
    kind = adapter.event_kind(event)  # completed | expired | ...
    if kind not in ("completed", "expired"):
        logger.debug("webhook {} acknowledged", event.get("type"))
        return {"ok": True, "ignored": True}

    csid, idem = adapter.event_ids(event)
    if not csid:
        raise HTTPException(400, detail="missing checkout_session_id")

    order_id = adapter.event_order_id(event)
    if not order_id:
        # sessions created elsewhere may lack metadata
        found = await orders.find_by_checkout_session(db, csid)
        order_id = found["id"] if found else None

    async with timeit("db.apply_payment_event"):
        return await orders.apply_payment_event(
            db,
            kind=kind,
            event_id=idem,
            session_id=csid,
            order_id=order_id,
            payment_intent=adapter.event_payment_intent(event),
        )


# ----------------------------
# Redirect shim: https success/cancel URL -> app deep link
# ----------------------------
@router.get("/payments/return")
async def payments_return(
    order_id: str = "", result: str = "", session_id: str = ""
):
    return RedirectResponse(
        url=app_return_url(order_id, result, session_id),
        status_code=302,
        headers={"Cache-Control": "no-store"},
    )


# ----------------------------
# MockPay hosted page
# ----------------------------
def _mockpay(adapter: PaymentAdapter) -> MockPay:
    if not isinstance(adapter, MockPay):
        raise HTTPException(404, detail="MockPay is not enabled")
    return adapter


@router.get("/mockpay/{psid}", response_class=HTMLResponse)
async def mockpay_screen(
    psid: str,
    db: GatedAsyncSession = Depends(get_db),
    adapter: PaymentAdapter = Depends(get_adapter),
):
    mock = _mockpay(adapter)
    order = await orders.find_by_checkout_session(db, psid)
    if not order:
        raise HTTPException(404, detail="checkout session not found")
    return render_template(
        "mockpay.html",
        psid=psid,
        order_id=order["id"],
        status=order["status"],
        total=f"{order['total']:.2f}",
        currency=config.CHECKOUT_CURRENCY,
        webhook_url=mock.webhook_url,
    )


@router.post("/mockpay/{psid}/emit")
async def mockpay_emit(
    psid: str,
    request: Request,
    db: GatedAsyncSession = Depends(get_db),
    adapter: PaymentAdapter = Depends(get_adapter),
    http: httpx.AsyncClient = Depends(get_http),
):
    mock = _mockpay(adapter)
    form = await request.form()
    kind = form.get("t")  # completed | expired
    if kind not in {"completed", "expired"}:
        raise HTTPException(400, detail="invalid kind")

    order = await orders.find_by_checkout_session(db, psid)
    if not order:
        raise HTTPException(404, detail="checkout session not found")

    event = mock.build_event(kind, psid, order["id"], order["user_id"])
    payload = json.dumps(event).encode()
    try:
        async with timeit("mockpay.deliver"):
            await http.post(
                mock.webhook_url,
                content=payload,
                headers={
                    "x-mockpay-signature": mock.sign(payload),
                    "content-type": "application/json",
                },
            )
    except httpx.HTTPError as e:
        # the redirect still happens; the app keeps polling the order
        logger.warning("MockPay webhook delivery failed: {}", e)

    result = "success" if kind == "completed" else "cancel"
    query = urlencode(
        {"order_id": order["id"], "result": result, "session_id": psid}
    )
    return RedirectResponse(
        url=f"/payments/return?{query}",
        status_code=303,
    )
