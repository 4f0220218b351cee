"""Production wiring: builds an Engine with real collaborators from Settings."""

from ticketbot.analysis.thread_analyzer import ThreadAnalyzer
from ticketbot.cache import VolatileCache
from ticketbot.clients.llm_client import ReasoningClient
from ticketbot.clients.zoho_auth import ZohoAuthenticator
from ticketbot.clients.zoho_client import ZohoDeskClient
from ticketbot.config import Settings
from ticketbot.engine import Engine
from ticketbot.tracking.tracker import PersistentTracker


def build_engine(settings: Settings) -> Engine:
    """
    Construct the engine and every collaborator it needs.

    Raises:
        RuntimeError: Missing credentials.
    """
    auth = ZohoAuthenticator.from_env(
        top_level_domain=settings.zoho_top_level_domain, env_file=settings.env_file
    )
    source = ZohoDeskClient(
        auth,
        org_id=settings.org_id,
        top_level_domain=settings.zoho_top_level_domain,
        timeout=settings.http_timeout_seconds,
    )
    analyzer = ThreadAnalyzer(ReasoningClient.from_settings(settings))
    tracker = PersistentTracker(settings.db_path, skip_threshold=settings.skip_threshold)
    return Engine(
        settings,
        source=source,
        analyzer=analyzer,
        tracker=tracker,
        cache=VolatileCache(settings.cache_limit),
    )
