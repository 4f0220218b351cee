"""
ticketbot/clients/llm_client.py
Reasoning service backed by a CrewAI single-agent crew on an Azure OpenAI deployment.
Exports: AzureTokenProvider, ReasoningClient, extract_json_object
"""

import json
import logging
import re
import threading
from datetime import timedelta
from typing import Any

from crewai import LLM, Agent, Crew, Process, Task

from ticketbot.clients.http import request_json, with_auth_refresh
from ticketbot.common.crew_kickoff import extract_task_output, is_empty_llm_response_error, kickoff_with_empty_retry
from ticketbot.common.retry import RetryPolicy, http_policy
from ticketbot.common.timestamps import utc_now
from ticketbot.config import Settings, required_env
from ticketbot.errors import BotError, ErrorKind, classify, status_of

logger = logging.getLogger(__name__)

AZURE_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
AZURE_SCOPE = "https://cognitiveservices.azure.com/.default"
TOKEN_REFRESH_MARGIN = timedelta(seconds=300)
SYSTEM_BACKSTORY = "You are an Expert Technical Support Engineer."


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the first JSON object in model output, tolerating ```json fences."""
    stripped = (text or "").strip()
    if not stripped:
        raise BotError.permanent("Empty model output.")
    fence = re.search(r"```(?:json)?\s*(\{.*\})\s*```", stripped, flags=re.DOTALL)
    candidate = fence.group(1) if fence else stripped
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start < 0 or end <= start:
        raise BotError.permanent("Model output did not include a JSON object.")
    try:
        data = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as exc:
        raise BotError.permanent("Model output was not valid JSON.", cause=exc) from exc
    if not isinstance(data, dict):
        raise BotError.permanent("Model output JSON was not an object.")
    return data


class AzureTokenProvider:
    """Entra ID client-credentials token cache for the Azure OpenAI deployment."""

    def __init__(self, tenant_id: str, client_id: str, client_secret: str, *, timeout: float = 30) -> None:
        if not (tenant_id and client_id and client_secret):
            raise RuntimeError("Missing Azure OAuth credentials.")
        self._url = AZURE_TOKEN_URL.format(tenant=tenant_id)
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._token: str | None = None
        self._expires_at = utc_now()
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> "AzureTokenProvider":
        return cls(
            required_env("AZURE_TENANT_ID"),
            required_env("AZURE_CLIENT_ID"),
            required_env("AZURE_CLIENT_SECRET"),
        )

    def token(self) -> str:
        with self._lock:
            if not self._token or utc_now() >= self._expires_at - TOKEN_REFRESH_MARGIN:
                self._fetch_locked()
            return self._token or ""

    def force_refresh(self) -> str:
        with self._lock:
            self._fetch_locked()
            return self._token or ""

    def _fetch_locked(self) -> None:
        logger.info("Fetching new Azure Entra ID token...")
        data = request_json(
            "POST",
            self._url,
            form={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "scope": AZURE_SCOPE,
            },
            timeout=self._timeout,
        )
        if not isinstance(data, dict) or not data.get("access_token"):
            raise BotError.permanent("Azure token response did not include an access_token.")
        self._token = str(data["access_token"])
        self._expires_at = utc_now() + timedelta(seconds=int(data.get("expires_in") or 3599))
        logger.info("Azure token acquired.")


def _as_bot_error(exc: Exception) -> Exception:
    """Wrap classified provider failures; leave unknown ones for the per-ticket boundary."""
    if isinstance(exc, BotError):
        return exc
    if is_empty_llm_response_error(exc):
        return BotError.permanent("Reasoning service returned an empty response.", cause=exc)
    kind = classify(exc)
    if kind is ErrorKind.UNEXPECTED:
        return exc
    return BotError(f"Reasoning service error: {exc}", kind, cause=exc, status=status_of(exc))


class ReasoningClient:
    """`generate(prompt, json_mode)` over CrewAI, with retries and one forced token refresh."""

    def __init__(
        self,
        tokens: AzureTokenProvider,
        *,
        endpoint_url: str,
        deployment: str,
        api_version: str,
        timeout: float = 120,
        temperature: float = 0.1,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.tokens = tokens
        self.endpoint_url = endpoint_url.rstrip("/")
        self.deployment = deployment
        self.api_version = api_version
        self.timeout = timeout
        self.temperature = temperature
        self.retry_policy = retry_policy or http_policy(max_retries=2, base_delay=5.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReasoningClient":
        return cls(
            AzureTokenProvider.from_env(),
            endpoint_url=settings.azure_endpoint_url,
            deployment=settings.azure_deployment_name,
            api_version=settings.azure_api_version,
            timeout=settings.llm_timeout_seconds,
        )

    def build_llm(self) -> Any:
        return LLM(
            model=f"azure/{self.deployment}",
            base_url=self.endpoint_url,
            api_version=self.api_version,
            azure_ad_token=self.tokens.token(),
            temperature=self.temperature,
            timeout=self.timeout,
        )

    def _generate_once(self, prompt: str, json_mode: bool) -> str:
        engineer = Agent(
            role="Support Ticket Analyst",
            goal="Maintain a precise technical state of a support ticket from its conversation.",
            backstory=SYSTEM_BACKSTORY,
            llm=self.build_llm(),
            verbose=False,
            allow_delegation=False,
        )
        description = prompt
        if json_mode:
            description += "\n\nOutput pure JSON only. No Markdown fencing, no preamble."
        task = Task(
            description=description,
            expected_output="A single JSON object." if json_mode else "Plain text answer.",
            agent=engineer,
        )
        crew = Crew(agents=[engineer], tasks=[task], process=Process.sequential, verbose=False)
        try:
            result = kickoff_with_empty_retry(crew=crew, logger=logger, label="Reasoning")
        except Exception as exc:
            error = _as_bot_error(exc)
            if error is exc:
                raise
            raise error from exc
        output = extract_task_output(task) or str(getattr(result, "raw", "") or "").strip()
        if not output:
            raise BotError.permanent("Reasoning service returned an empty response.")
        if json_mode:
            return json.dumps(extract_json_object(output))
        return output

    def generate(self, prompt: str, json_mode: bool = False) -> str:
        """
        Submit one prompt and return the model text.

        Raises:
            BotError: TRANSIENT on timeout/429/5xx after retries; PERMANENT on
                4xx, auth failure after one refresh, empty or invalid output.
        """
        return with_auth_refresh(
            lambda: self.retry_policy.call(
                lambda: self._generate_once(prompt, json_mode), label="Reasoning call", logger=logger
            ),
            self.tokens.force_refresh,
            label="Reasoning call",
            logger=logger,
        )
