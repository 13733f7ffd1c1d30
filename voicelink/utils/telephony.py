import base64
import hashlib
import hmac
import logging
from xml.sax.saxutils import escape

import requests
from django.conf import settings

from voicelink.exceptions import ProviderError

logger = logging.getLogger(__name__)

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


class TelephonyClient:
    """
    Thin HTTP client for the telephony provider's Calls resource.

    Only the PSTN leg goes through here; app-to-app calls are connected by the
    client SDK and never reach this class. Every failure mode (network error,
    timeout, rejected request, malformed response) surfaces as ProviderError
    carrying a structured ``detail`` dict for logging and API responses.
    """

    def __init__(
        self,
        base_url,
        account_sid,
        auth_token,
        caller_id,
        status_callback_url,
        timeout=10,
    ):
        self.base_url = base_url.rstrip("/")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.caller_id = caller_id
        self.status_callback_url = status_callback_url
        self.timeout = timeout

    @property
    def calls_url(self):
        return f"{self.base_url}/Accounts/{self.account_sid}/Calls.json"

    def place_call(self, billing_identity: str, destination_number: str) -> str:
        """
        Ask the provider to dial ``destination_number``.

        Args:
            billing_identity: Provider-side identity of the calling subscriber.
            destination_number: E.164 number to dial.

        Returns:
            The provider's call sid.

        Raises:
            ProviderError: If the provider could not be reached or refused the call.
        """
        payload = {
            "To": destination_number,
            "From": self.caller_id,
            "Twiml": (
                f'<Response><Dial callerId="{escape(self.caller_id)}">'
                f"{escape(destination_number)}</Dial></Response>"
            ),
            "StatusCallback": self.status_callback_url,
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            "StatusCallbackMethod": "POST",
        }

        try:
            response = requests.post(
                self.calls_url,
                data=payload,
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            logger.error(
                "Telephony timeout: identity=%s to=%s error=%s",
                billing_identity,
                destination_number,
                str(exc),
            )
            raise ProviderError(
                "Telephony provider timed out.",
                {"error": "timeout", "detail": str(exc)},
            ) from exc
        except requests.exceptions.RequestException as exc:
            logger.error(
                "Telephony request error: identity=%s to=%s error=%s",
                billing_identity,
                destination_number,
                str(exc),
            )
            raise ProviderError(
                "Telephony provider is unreachable.",
                {"error": "request_error", "detail": str(exc)},
            ) from exc

        try:
            response_data = response.json()
        except ValueError:
            response_data = {"body": response.text[:500]}

        if not response.ok:
            logger.warning(
                "Telephony rejected call: identity=%s to=%s status=%d response=%s",
                billing_identity,
                destination_number,
                response.status_code,
                response_data,
            )
            raise ProviderError(
                "Telephony provider rejected the call.",
                {"error": "rejected", "status": response.status_code, "response": response_data},
            )

        call_sid = response_data.get("sid") if isinstance(response_data, dict) else None
        if not call_sid:
            logger.warning(
                "Telephony response without sid: identity=%s to=%s response=%s",
                billing_identity,
                destination_number,
                response_data,
            )
            raise ProviderError(
                "Telephony provider returned no call id.",
                {"error": "malformed_response", "response": response_data},
            )

        logger.info(
            "Telephony call placed: identity=%s to=%s sid=%s",
            billing_identity,
            destination_number,
            call_sid,
        )
        return call_sid


def get_telephony_client() -> TelephonyClient:
    """Build a TelephonyClient from Django settings."""
    return TelephonyClient(
        base_url=getattr(settings, "TELEPHONY_BASE_URL", "https://api.twilio.com/2010-04-01"),
        account_sid=getattr(settings, "TELEPHONY_ACCOUNT_SID", ""),
        auth_token=getattr(settings, "TELEPHONY_AUTH_TOKEN", ""),
        caller_id=getattr(settings, "TELEPHONY_CALLER_ID", ""),
        status_callback_url=getattr(settings, "TELEPHONY_STATUS_CALLBACK_URL", ""),
        timeout=getattr(settings, "TELEPHONY_TIMEOUT", 10),
    )


def compute_signature(auth_token: str, url: str, params) -> str:
    """
    Sign a webhook request the way the provider does.

    The full callback URL is followed by every POST parameter, sorted by
    name, as name+value; the result is HMAC-SHA1'd with the auth token and
    base64 encoded. ``params`` maps names to a value or a list of values.
    """
    payload = url
    for key in sorted(params):
        values = params[key]
        if isinstance(values, (list, tuple)):
            for value in sorted(values):
                payload += f"{key}{value}"
        else:
            payload += f"{key}{values}"
    digest = hmac.new(
        auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_signature(auth_token: str, url: str, params, signature: str) -> bool:
    if not signature:
        return False
    expected = compute_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)
