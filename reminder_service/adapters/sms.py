"""SMS adapters: Twilio REST and a development stub."""

import time

import httpx
import structlog

from reminder_service.adapters.base import OutboundMessage
from reminder_service.config import Settings
from reminder_service.core.exceptions import SendFailure
from reminder_service.services.outcomes import SendOutcome

logger = structlog.get_logger(__name__)

# Twilio error codes that will not succeed on retry (bad or unreachable number)
PERMANENT_TWILIO_CODES = frozenset({21211, 21408, 21610, 21612, 21614})


def outcome_for_twilio_response(response: httpx.Response) -> SendOutcome:
    """Translate a failed Twilio API response into a SendOutcome."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    twilio_code = body.get("code") if isinstance(body, dict) else None
    message = body.get("message") if isinstance(body, dict) else None
    text = message or response.text[:300] or f"HTTP {response.status_code}"

    permanent: bool | None = None
    if twilio_code in PERMANENT_TWILIO_CODES:
        permanent = True
    elif response.status_code == 429 or response.status_code >= 500:
        # HTTP server-side errors are retryable, unlike SMTP 5xx replies
        permanent = False

    return SendOutcome.failed(
        status_code=response.status_code,
        error_code=f"twilio_{twilio_code}" if twilio_code else None,
        error_text=text,
        permanent=permanent,
    )


class TwilioSmsAdapter:
    """Sends SMS through the Twilio Messages API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_phone: str,
        base_url: str = "https://api.twilio.com",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize adapter; ``client`` lets callers share or mock the HTTP client."""
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_phone = from_phone
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioSmsAdapter":
        """Build from settings, failing fast on missing credentials."""
        missing = [
            name
            for name, value in (
                ("TWILIO_ACCOUNT_SID", settings.twilio_account_sid),
                ("TWILIO_AUTH_TOKEN", settings.twilio_auth_token),
                ("TWILIO_FROM_PHONE", settings.twilio_from_phone),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
        return cls(
            account_sid=settings.twilio_account_sid or "",
            auth_token=settings.twilio_auth_token or "",
            from_phone=settings.twilio_from_phone or "",
            base_url=settings.twilio_api_base_url,
            timeout=settings.twilio_timeout_seconds,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"

    async def _post(self, client: httpx.AsyncClient, data: dict[str, str]) -> httpx.Response:
        return await client.post(
            self.endpoint,
            auth=(self.account_sid, self.auth_token),
            data=data,
            timeout=self.timeout,
        )

    async def send(self, message: OutboundMessage) -> str:
        """Send one SMS and return the Twilio message SID."""
        data = {"To": message.to, "From": self.from_phone, "Body": message.text}
        try:
            if self._client is not None:
                response = await self._post(self._client, data)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, data)
        except httpx.TimeoutException as exc:
            raise SendFailure(
                SendOutcome.failed(error_code="ETIMEDOUT", error_text=str(exc))
            ) from exc
        except httpx.ConnectError as exc:
            raise SendFailure(
                SendOutcome.failed(error_code="ECONNREFUSED", error_text=str(exc))
            ) from exc
        except httpx.TransportError as exc:
            raise SendFailure(
                SendOutcome.failed(error_code="ECONNRESET", error_text=str(exc))
            ) from exc

        if response.status_code not in (200, 201):
            outcome = outcome_for_twilio_response(response)
            logger.warning(
                "twilio_send_failed",
                status_code=response.status_code,
                error_code=outcome.error_code,
            )
            raise SendFailure(outcome)

        sid = response.json().get("sid")
        return str(sid) if sid else "twilio-no-sid"


class StubSmsAdapter:
    """Pretends to send and returns a stub provider id."""

    async def send(self, message: OutboundMessage) -> str:
        provider_id = f"sms-stub:{message.to}:{int(time.time() * 1000)}"
        logger.info("sms_stub_sent", to=message.to, provider_message_id=provider_id)
        return provider_id
