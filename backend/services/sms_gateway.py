"""
Passerelle SMS : un appel sortant par message, jamais de retry automatique.

Trois fournisseurs, choisis par settings.SMS_PROVIDER :
  mock            → log uniquement (développement)
  africastalking  → API REST Africa's Talking (username + apiKey)
  twilio          → SDK Twilio (account SID + auth token)
Toute erreur (réseau, timeout, réponse non-succès) lève DispatchFailure.
"""
import asyncio
import logging
from typing import Optional

import httpx
from requests.exceptions import RequestException
from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from config import settings
from core.exceptions import DispatchFailure
from core.utils import mask_phone, validate_phone_number
from models.notification import SmsResult

logger = logging.getLogger(__name__)

AT_LIVE_URL    = "https://api.africastalking.com/version1/messaging"
AT_SANDBOX_URL = "https://api.sandbox.africastalking.com/version1/messaging"
# Codes "succès" d'Africa's Talking : Processed, Sent, Queued
AT_SUCCESS_CODES = {100, 101, 102}


class SmsGateway:
    provider = "base"

    async def send(self, to: str, message: str) -> SmsResult:
        if not to or not message:
            raise DispatchFailure('Les champs "to" et "message" sont obligatoires', self.provider)
        if not validate_phone_number(to):
            raise DispatchFailure(f"Numéro invalide : {mask_phone(to)}", self.provider)
        return await self._deliver(to, message)

    async def _deliver(self, to: str, message: str) -> SmsResult:
        raise NotImplementedError


class MockSmsGateway(SmsGateway):
    provider = "mock"

    async def _deliver(self, to: str, message: str) -> SmsResult:
        logger.info(f"[MOCK SMS] to: {mask_phone(to)} message: {message}")
        return SmsResult(success=True, provider=self.provider,
                         data="SMS sent successfully (mock mode)")


class AfricasTalkingGateway(SmsGateway):
    provider = "africastalking"

    def __init__(
        self,
        username: str,
        api_key: str,
        sender_id: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.username = username
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return AT_SANDBOX_URL if self.username == "sandbox" else AT_LIVE_URL

    async def _deliver(self, to: str, message: str) -> SmsResult:
        payload = {"username": self.username, "to": to, "message": message}
        if self.sender_id:
            payload["from"] = self.sender_id
        headers = {"apiKey": self.api_key, "Accept": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, data=payload, headers=headers)
        except httpx.HTTPError as e:
            raise DispatchFailure(f"Africa's Talking injoignable : {e}", self.provider) from e

        try:
            data = response.json()
        except ValueError:
            data = response.text
        logger.debug(f"AT Response ({response.status_code}): {data}")

        if not response.is_success:
            raise DispatchFailure(
                f"Africa's Talking a répondu {response.status_code}", self.provider
            )

        recipients = []
        if isinstance(data, dict):
            recipients = (data.get("SMSMessageData") or {}).get("Recipients") or []
        rejected = [r for r in recipients if r.get("statusCode") not in AT_SUCCESS_CODES]
        if rejected:
            raise DispatchFailure(
                f"SMS refusé par Africa's Talking : {rejected[0].get('status')}", self.provider
            )

        return SmsResult(success=True, provider=self.provider, data=data)


class TwilioSmsGateway(SmsGateway):
    provider = "twilio"

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 timeout: float = 10.0, client: Optional[Client] = None):
        self.from_number = from_number
        self.client = client or Client(
            account_sid, auth_token, http_client=TwilioHttpClient(timeout=timeout)
        )

    async def _deliver(self, to: str, message: str) -> SmsResult:
        try:
            # Le SDK Twilio est synchrone
            msg = await asyncio.to_thread(
                self.client.messages.create, body=message, from_=self.from_number, to=to
            )
        except (TwilioException, RequestException) as e:
            raise DispatchFailure(f"Erreur Twilio : {e}", self.provider) from e

        return SmsResult(success=True, provider=self.provider,
                         data={"sid": msg.sid, "status": msg.status})


def build_sms_gateway() -> SmsGateway:
    """Instancie la passerelle configurée. Fournisseur inconnu ou incomplet → mock."""
    provider = settings.SMS_PROVIDER.lower()

    if provider == "africastalking":
        if settings.AT_APIKEY:
            return AfricasTalkingGateway(
                username=settings.AT_USERNAME,
                api_key=settings.AT_APIKEY,
                sender_id=settings.AT_SENDER_ID,
                timeout=settings.SMS_TIMEOUT_SECONDS,
            )
        logger.warning("Africa's Talking non configuré (AT_APIKEY manquant), SMS en mode mock")
    elif provider == "twilio":
        if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_SMS_NUMBER:
            return TwilioSmsGateway(
                account_sid=settings.TWILIO_ACCOUNT_SID,
                auth_token=settings.TWILIO_AUTH_TOKEN,
                from_number=settings.TWILIO_SMS_NUMBER,
                timeout=settings.SMS_TIMEOUT_SECONDS,
            )
        logger.warning("Twilio non configuré, SMS en mode mock")
    elif provider != "mock":
        logger.warning(f"SMS_PROVIDER inconnu '{provider}', SMS en mode mock")

    return MockSmsGateway()
