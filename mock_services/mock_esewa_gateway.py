"""
mock_esewa_gateway.py — Mock Implementation of the eSewa Payment Gateway

This module provides a simulated gateway for local runs of the checkout flow.
It exposes a small FastAPI application that mimics the two gateway endpoints
the checkout service talks to.

Simulation Scenarios:
    • Signed form accepted → redirect to the hosted payment page
    • Invalid signature or unknown merchant → HTTP 400
    • Buyer pays / aborts on the hosted page → status COMPLETE / CANCELED
    • Unknown transaction on status check → status NOT_FOUND

Endpoints:
    POST /api/epay/main/v2/form            — accepts the signed payment form
    GET  /mock/pay/{transaction_uuid}      — simulates the buyer's decision
    GET  /api/epay/transaction/status/     — status check

Port:
    Default: 8002 (HTTP)
"""

import logging
import os
import uuid
from urllib.parse import parse_qsl

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from checkout_service.signing import verify

MERCHANT_CODE = os.environ.get("ESEWA_MERCHANT_CODE", "EPAYTEST")
SECRET_KEY = os.environ.get("ESEWA_SECRET_KEY", "8gBm/:&EnhH.1/q(")

app = FastAPI(title="Mock eSewa Gateway")
log = logging.getLogger(__name__)

# transaction_uuid -> {"total_amount", "status", "ref_id", "success_url", "failure_url"}
transactions = {}


@app.post("/api/epay/main/v2/form")
async def submit_form(request: Request):
    """
    Accepts the signed, form-encoded payment request.

    Returns:
        302 redirect to the hosted payment page on success,
        400 JSON if fields are missing, the merchant is unknown or the signature is invalid.
    """
    form = dict(parse_qsl((await request.body()).decode("utf-8")))
    transaction_uuid = form.get("transaction_uuid", "")
    log.info(f"[GW] Zahlungsformular für {transaction_uuid} erhalten.")

    required = ("total_amount", "transaction_uuid", "product_code", "signature", "success_url", "failure_url")
    missing = [name for name in required if not form.get(name)]
    if missing:
        return JSONResponse(status_code=400, content={"error_message": f"missing fields: {', '.join(missing)}"})

    if form["product_code"] != MERCHANT_CODE:
        return JSONResponse(status_code=400, content={"error_message": "unknown product_code"})

    if not verify(form["total_amount"], transaction_uuid, form["product_code"], SECRET_KEY, form["signature"]):
        log.warning(f"[GW] Ungültige Signatur für {transaction_uuid}.")
        return JSONResponse(status_code=400, content={"error_message": "invalid signature"})

    transactions[transaction_uuid] = {
        "total_amount": float(form["total_amount"]),
        "status": "PENDING",
        "ref_id": None,
        "success_url": form["success_url"],
        "failure_url": form["failure_url"],
    }
    return RedirectResponse(url=f"/mock/pay/{transaction_uuid}", status_code=302)


@app.get("/mock/pay/{transaction_uuid}")
def hosted_payment_page(transaction_uuid: str, outcome: str = "success"):
    """
    Simulates the buyer on the hosted payment page.

    `outcome=success` completes the payment, anything else cancels it. The
    buyer is sent back to the merchant's success or failure URL.
    """
    transaction = transactions.get(transaction_uuid)
    if transaction is None:
        return JSONResponse(status_code=404, content={"error_message": "unknown transaction"})

    if outcome == "success":
        transaction["status"] = "COMPLETE"
        transaction["ref_id"] = uuid.uuid4().hex[:8].upper()
        target = transaction["success_url"]
    else:
        transaction["status"] = "CANCELED"
        target = transaction["failure_url"]
    log.info(f"[GW] Zahlung {transaction_uuid}: {transaction['status']}.")
    return RedirectResponse(url=f"{target}?transaction_uuid={transaction_uuid}", status_code=302)


@app.get("/api/epay/transaction/status/")
def transaction_status(product_code: str, total_amount: float, transaction_uuid: str):
    """Returns the gateway's status record for a transaction."""
    transaction = transactions.get(transaction_uuid)
    if transaction is None or product_code != MERCHANT_CODE or transaction["total_amount"] != total_amount:
        return {
            "product_code": product_code,
            "transaction_uuid": transaction_uuid,
            "total_amount": total_amount,
            "status": "NOT_FOUND",
            "ref_id": None,
        }
    return {
        "product_code": product_code,
        "transaction_uuid": transaction_uuid,
        "total_amount": transaction["total_amount"],
        "status": transaction["status"],
        "ref_id": transaction["ref_id"],
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8002)
