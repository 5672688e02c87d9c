import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

import requests
from flask import current_app

from errors import PaymentGatewayError
from phone import gateway_msisdn

logger = logging.getLogger(__name__)

# =========================
# ENVIRONMENT CONFIG
# =========================
MPESA_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}
AUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"


@dataclass(frozen=True)
class PaymentPrompt:
    checkout_request_id: str
    message: str


class StubGateway:
    """Pretends the STK prompt went out. Used in development and tests."""

    def __init__(self):
        self.prompts = []

    def initiate_payment(self, phone_number, amount, reference):
        if gateway_msisdn(phone_number) is None:
            raise PaymentGatewayError(f"Cannot prompt {phone_number!r}")
        prompt = PaymentPrompt(
            checkout_request_id=f"stub-{uuid.uuid4().hex[:12]}",
            message="Success. Request accepted for processing",
        )
        self.prompts.append((phone_number, amount, reference, prompt))
        logger.info("Stub M-Pesa prompt for %s: KES %s (%s)", phone_number, amount, reference)
        return prompt


class MpesaGateway:
    """Daraja STK push. Ends once the prompt is accepted; the payment
    callback is not consumed here."""

    def __init__(self, consumer_key, consumer_secret, shortcode, passkey,
                 callback_url, env="sandbox", timeout=30):
        if env not in MPESA_URLS:
            raise ValueError(f"Unknown M-Pesa environment {env!r}")
        if not (consumer_key and consumer_secret and passkey):
            raise ValueError("M-Pesa credentials are missing. Check your .env file.")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.base_url = MPESA_URLS[env]
        self.timeout = timeout

    def get_token(self):
        try:
            r = requests.get(
                self.base_url + AUTH_PATH,
                auth=(self.consumer_key, self.consumer_secret),
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise PaymentGatewayError(f"M-Pesa auth failed: {e}") from e

        if "access_token" not in data:
            raise PaymentGatewayError("M-Pesa auth failed. Check keys + environment.")
        return data["access_token"]

    def _password(self, timestamp):
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode()
        return base64.b64encode(raw).decode()

    def initiate_payment(self, phone_number, amount, reference):
        msisdn = gateway_msisdn(phone_number)
        if msisdn is None:
            raise PaymentGatewayError(f"Cannot prompt {phone_number!r}")

        token = self.get_token()
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": msisdn,
            "PartyB": self.shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": self.callback_url,
            "AccountReference": reference[:12],
            "TransactionDesc": "Match tickets",
        }
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            r = requests.post(
                self.base_url + STK_PUSH_PATH, json=payload, headers=headers, timeout=self.timeout
            )
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise PaymentGatewayError(f"STK push failed: {e}") from e

        if r.status_code != 200 or str(data.get("ResponseCode")) != "0":
            message = data.get("errorMessage") or data.get("ResponseDescription") or r.text
            raise PaymentGatewayError(f"STK push rejected: {message}")

        logger.info("STK push sent to %s, checkout %s", msisdn, data.get("CheckoutRequestID"))
        return PaymentPrompt(
            checkout_request_id=data["CheckoutRequestID"],
            message=data.get("CustomerMessage", ""),
        )


def build_gateway(config):
    env = config.get("MPESA_ENV", "stub")
    if env == "stub":
        return StubGateway()
    return MpesaGateway(
        consumer_key=config["MPESA_CONSUMER_KEY"],
        consumer_secret=config["MPESA_CONSUMER_SECRET"],
        shortcode=config["MPESA_SHORTCODE"],
        passkey=config["MPESA_PASSKEY"],
        callback_url=config["MPESA_CALLBACK_URL"],
        env=env,
        timeout=config.get("MPESA_TIMEOUT", 30),
    )


def get_gateway():
    return current_app.extensions["payment_gateway"]
