"""
Module: supply_kernel.selectors.base
Responsibility: Base class for read-only query selectors (the "Q" side of
    the services/selectors split).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction
      scope.  A selector query is a single statement, i.e. a snapshot read;
      it takes no row locks.
"""

from sqlalchemy.orm import Session


class BaseSelector:
    """
    Base class for all selectors.

    Guarantees:
        - session is stored as a public attribute for subclass query use.
        - No commit, flush, add, or delete operations are performed.
    """

    def __init__(self, session: Session):
        self.session = session
