# cartlock/utils/retry.py
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from cartlock.utils.settings import HTTP_RETRY_ATTEMPTS


# reads only; cart mutations are never retried automatically
def http_retry(attempts: int = HTTP_RETRY_ATTEMPTS):
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(httpx.TransportError),
    )
