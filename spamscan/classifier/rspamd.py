"""Rspamd HTTP classifier adapter."""

from typing import Any

import requests

from spamscan.classifier.base import Classifier, ClassifierError
from spamscan.models.message import LearnResult, Polarity, SpamInfo
from spamscan.utils.email_parser import strip_spam_headers
from spamscan.utils.logging import logger

# Rspamd actions that mean the message should be treated as spam
SPAM_ACTIONS = frozenset({"reject", "add header", "rewrite subject"})


def parse_rspamd_output(result: Any) -> SpamInfo:
    """Convert a /checkv2 response into a SpamInfo.

    Missing scores default to 0. Greylist, soft reject and no action are
    not spam.

    Raises:
        ClassifierError: If the response is not a JSON object.
    """
    if not isinstance(result, dict):
        raise ClassifierError("Invalid Rspamd response format")

    action = result.get("action") or ""
    return SpamInfo(
        score=float(result.get("score") or 0),
        required=float(result.get("required_score") or 0),
        is_spam=action in SPAM_ACTIONS,
    )


def is_already_learned(result: dict[str, Any]) -> bool:
    """Whether a learn response reports the message as already learned."""
    error = result.get("error")
    return isinstance(error, str) and "already learned" in error.lower()


class RspamdClassifier(Classifier):
    """Classifier backed by the Rspamd controller HTTP API."""

    name = "rspamd"

    LEARN_ENDPOINTS = {
        Polarity.SPAM: "/learnspam",
        Polarity.HAM: "/learnham",
    }

    def __init__(
        self,
        url: str = "http://localhost:11333",
        password: str | None = None,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            url: Base URL of the Rspamd controller.
            password: Controller password, sent in the ``Password`` header.
            timeout: Per-request timeout in seconds.
            session: Optional pre-configured requests session.
        """
        self.url = url.rstrip("/")
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "text/plain"}
        if self.password:
            headers["Password"] = self.password
        return headers

    def _post(self, endpoint: str, raw: bytes, operation: str) -> requests.Response:
        if not raw:
            raise ClassifierError("Email content is required")

        url = f"{self.url}{endpoint}"
        try:
            response = self.session.post(
                url, data=raw, headers=self._headers(), timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Rspamd {operation} request to {url} failed: {e}")
            raise ClassifierError(f"Rspamd {operation} request failed: {e}") from e

        if not response.ok:
            raise ClassifierError(
                f"Rspamd {operation} failed with status {response.status_code}: {response.text}"
            )
        return response

    def check(self, raw: bytes) -> SpamInfo:
        """Score a message with /checkv2."""
        response = self._post("/checkv2", strip_spam_headers(raw), "check")

        try:
            result = response.json()
        except ValueError as e:
            raise ClassifierError(f"Rspamd response parse failed: {e}") from e

        logger.debug(f"Rspamd check response: {result}")
        return parse_rspamd_output(result)

    def learn(self, raw: bytes, polarity: Polarity) -> LearnResult:
        """Train Rspamd via /learnspam or /learnham."""
        operation = f"learn {polarity.value}"
        response = self._post(self.LEARN_ENDPOINTS[polarity], raw, operation)

        if not response.text:
            return LearnResult(success=True)

        try:
            result = response.json()
        except ValueError as e:
            raise ClassifierError(f"Rspamd response parse failed: {e}") from e

        if not isinstance(result, dict):
            raise ClassifierError(f"Rspamd {operation} failed: {result}")

        if result.get("success") is not True:
            if is_already_learned(result):
                logger.info(f"Rspamd {operation} skipped: {result['error']}")
                return LearnResult(success=True, already_learned=True, message=result["error"])
            raise ClassifierError(f"Rspamd {operation} failed: {result}")

        return LearnResult(success=True, message=str(result.get("message", "")))

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
