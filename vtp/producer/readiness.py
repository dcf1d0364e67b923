import logging
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


class ConsumerUnavailable(Exception):
    """The consumer never answered the readiness probe."""


def is_consumer_ready(session: requests.Session, url: str, timeout_s: float) -> bool:
    try:
        response = session.get(url, timeout=(timeout_s, timeout_s))
    except requests.RequestException:
        return False
    return response.status_code == 200


def wait_for_consumer(
    url: str,
    max_retries: int,
    interval_s: float,
    timeout_s: float = 5.0,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll url until it answers 200. Returns the number of attempts used.

    Raises ConsumerUnavailable after max_retries failed attempts so the
    producer can exit instead of uploading against an absent service.
    """
    session = session or requests.Session()
    logger.info(f"Waiting for consumer at {url}")
    for attempt in range(1, max_retries + 1):
        if is_consumer_ready(session, url, timeout_s):
            logger.info(f"Consumer is ready (attempt {attempt}/{max_retries})")
            return attempt
        logger.info(f"Waiting for consumer... (attempt {attempt}/{max_retries})")
        if attempt < max_retries:
            sleep(interval_s)
    raise ConsumerUnavailable(f"Consumer failed to start after {max_retries} attempts")
