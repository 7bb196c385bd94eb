"""SpamAssassin command-line classifier adapter."""

import re
import subprocess

from spamscan.classifier.base import Classifier, ClassifierError
from spamscan.models.message import LearnResult, Polarity, SpamInfo
from spamscan.utils.email_parser import extract_headers, strip_spam_headers
from spamscan.utils.logging import logger

_SCORE = re.compile(r"score=(-?[0-9.]+)")
_REQUIRED = re.compile(r"required=(-?[0-9.]+)")


def parse_spamassassin_headers(headers: dict[str, str]) -> SpamInfo:
    """Read the verdict spamc added to a message's headers.

    Args:
        headers: Lower-cased headers of the processed message.

    Returns:
        SpamInfo with score and required as None when absent.
    """
    status = headers.get("x-spam-status", "")
    score_match = _SCORE.search(status)
    required_match = _REQUIRED.search(status)

    return SpamInfo(
        score=float(score_match.group(1)) if score_match else None,
        required=float(required_match.group(1)) if required_match else None,
        is_spam=headers.get("x-spam-flag", "").strip().upper() == "YES",
        level=len(headers.get("x-spam-level", "").strip()),
    )


class SpamAssassinClassifier(Classifier):
    """Classifier that shells out to spamc and sa-learn."""

    name = "spamassassin"

    def __init__(
        self,
        username: str | None = None,
        max_size: int = 100_000_000,
        timeout: float = 30.0,
        spamc: str = "spamc",
        sa_learn: str = "sa-learn",
    ) -> None:
        self.username = username
        self.max_size = max_size
        self.timeout = timeout
        self.spamc = spamc
        self.sa_learn = sa_learn

    def _run(self, args: list[str], raw: bytes) -> subprocess.CompletedProcess:
        if not raw:
            raise ClassifierError("Email content is required")

        try:
            result = subprocess.run(
                args,
                input=raw,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ClassifierError(f"{args[0]} not found: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise ClassifierError(f"{args[0]} timed out after {self.timeout}s") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ClassifierError(f"{args[0]} failed with code {result.returncode}: {stderr}")
        return result

    def check(self, raw: bytes) -> SpamInfo:
        """Score a message with spamc."""
        args = [self.spamc]
        if self.username:
            args += ["--username", self.username]
        args += ["--max-size", str(self.max_size)]

        result = self._run(args, strip_spam_headers(raw))
        return parse_spamassassin_headers(extract_headers(result.stdout))

    def learn(self, raw: bytes, polarity: Polarity) -> LearnResult:
        """Train with sa-learn --spam or --ham."""
        args = [self.sa_learn, f"--max-size={self.max_size}", f"--{polarity.value}"]
        result = self._run(args, raw)

        output = result.stdout.decode("utf-8", errors="replace").strip()
        logger.debug(f"sa-learn output: {output}")

        # sa-learn reports "Learned tokens from 0 message(s)" for known messages
        already_learned = "already learned" in output.lower() or "from 0 message" in output
        return LearnResult(success=True, already_learned=already_learned, message=output)
