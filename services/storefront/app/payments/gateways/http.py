import httpx
from app.core.config import settings
from app.core.errors import ProviderCommunicationError

def request_json(provider: str, method: str, url: str, transport: httpx.BaseTransport | None = None, **kwargs) -> dict:
    """One bounded call to a provider API; anything but a 2xx JSON answer fails closed."""
    try:
        with httpx.Client(timeout=settings.PROVIDER_TIMEOUT_SECONDS, transport=transport) as client:
            resp = client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise ProviderCommunicationError(provider, f"{method} {url} timed out") from e
    except httpx.RequestError as e:
        raise ProviderCommunicationError(provider, f"{method} {url} failed: {e}") from e
    if resp.status_code >= 400:
        raise ProviderCommunicationError(provider, f"{method} {url} returned {resp.status_code}: {resp.text[:500]}", status=resp.status_code)
    try:
        data = resp.json()
    except ValueError as e:
        raise ProviderCommunicationError(provider, f"{method} {url} returned invalid JSON", status=resp.status_code) from e
    if not isinstance(data, dict):
        raise ProviderCommunicationError(provider, f"{method} {url} returned unexpected JSON", status=resp.status_code)
    return data

def cents_to_decimal(cents: int) -> float:
    return round(cents / 100, 2)
