"""Collaborator contracts the engine depends on."""

from typing import Protocol

from ticketbot.models import Activity, AnalysisResult, TicketRef


class TicketSource(Protocol):
    def list_open_tickets(self, view_id: str) -> list[TicketRef]: ...

    def get_ticket_by_number(self, number: str) -> TicketRef | None: ...

    def get_latest_activity(self, ticket_id: str) -> Activity | None: ...

    def get_full_conversation(self, ticket_id: str) -> list[Activity]: ...

    def post_private_note(self, ticket_id: str, html: str) -> None: ...


class ReasoningService(Protocol):
    def generate(self, prompt: str, json_mode: bool = False) -> str: ...


class Analyzer(Protocol):
    def analyze(self, ticket: TicketRef, conversation: list[Activity]) -> AnalysisResult | None: ...
