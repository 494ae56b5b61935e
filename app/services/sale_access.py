"""Agent-scoped sale lookups shared by the ledger and report services."""
from sqlalchemy.orm import Session, Query, selectinload
from app.models import Sale
from app.exceptions import NotFoundError

ADMIN_ROLE = 'admin'


def is_admin(role: str) -> bool:
    return role == ADMIN_ROLE


def scoped_sales_query(session: Session, agent_id: str, role: str) -> Query:
    """Admins see every sale; any other role only the sales it recorded."""
    query = session.query(Sale)
    if not is_admin(role):
        query = query.filter(Sale.agent_id == str(agent_id))
    return query


def get_sale_or_404(session: Session, sale_id: int, agent_id: str, role: str, for_update: bool = False) -> Sale:
    """
    Fetch a sale visible to the caller.

    A sale owned by another agent is reported exactly like a missing one.
    With for_update the row is locked (SELECT ... FOR UPDATE) on backends
    that support it and the identity map is refreshed from the database.
    """
    query = scoped_sales_query(session, agent_id, role).filter(Sale.id == sale_id)
    if for_update:
        query = (
            query.with_for_update()
            .populate_existing()
            .options(selectinload(Sale.payments), selectinload(Sale.items))
        )

    sale = query.first()
    if not sale:
        raise NotFoundError('Sale not found')
    return sale
