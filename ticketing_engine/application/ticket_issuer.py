import logging
import secrets
from uuid import uuid4

from sqlalchemy.orm import Session

from ticketing_engine.domain.state_machine import TicketStatus
from ticketing_engine.infrastructure.credentials.qr_renderer import QRCredentialRenderer
from ticketing_engine.infrastructure.db.models import Ticket
from ticketing_engine.infrastructure.repositories.ticket_repository import TicketRepository


logger = logging.getLogger(__name__)

# No I, O, 0 or 1 so codes survive being read out at the door.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_GROUPS = 3
CODE_GROUP_LENGTH = 4
MAX_CODE_ATTEMPTS = 10


def generate_ticket_code() -> str:
    """XXXX-XXXX-XXXX drawn from a CSPRNG (60 bits)."""
    groups = (
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_GROUP_LENGTH))
        for _ in range(CODE_GROUPS)
    )
    return "-".join(groups)


class TicketIssuer:
    """
    Mints tickets for a reservation whose capacity is already held.
    Performs no capacity logic of its own.
    """

    def __init__(
        self,
        db: Session,
        renderer: QRCredentialRenderer | None = None,
        code_factory=generate_ticket_code,
    ):
        self.db = db
        self.ticket_repository = TicketRepository(db)
        self.renderer = renderer or QRCredentialRenderer()
        self.code_factory = code_factory

    def issue(
        self,
        reservation_id: str,
        user_id: str,
        event_id: str,
        quantity: int,
    ) -> list[Ticket]:
        tickets = []
        taken: set[str] = set()

        for _ in range(quantity):
            code = self._unique_code(taken)
            taken.add(code)
            ticket = Ticket(
                id=str(uuid4()),
                user_id=user_id,
                event_id=event_id,
                reservation_id=reservation_id,
                code=code,
                status=TicketStatus.ACTIVE,
            )
            ticket.credential_payload = self._render(ticket)
            tickets.append(ticket)

        self.ticket_repository.add_all(tickets)

        failed = sum(1 for ticket in tickets if ticket.credential_payload is None)
        logger.info(
            "Issued %s ticket(s) for reservation %s (%s without credential)",
            len(tickets),
            reservation_id,
            failed,
        )
        return tickets

    def ensure_credential(self, ticket: Ticket) -> Ticket:
        if ticket.credential_payload is None:
            ticket.credential_payload = self._render(ticket)
            self.db.flush()
        return ticket

    def _unique_code(self, taken: set[str]) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self.code_factory()
            if code not in taken and not self.ticket_repository.code_exists(code):
                return code
            logger.warning("Ticket code collision, regenerating")
        raise RuntimeError("Could not generate a unique ticket code")

    def _render(self, ticket: Ticket) -> str | None:
        try:
            return self.renderer.render(ticket.id, ticket.code, ticket.event_id)
        except Exception:
            # Ticket stays valid for manual code entry.
            logger.exception("Failed to render credential for ticket %s", ticket.id)
            return None
