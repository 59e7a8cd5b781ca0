"""Service for the shared Security master list used by trades and holdings."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import Security
from services.exceptions import ImportValidationError

logger = logging.getLogger(__name__)


def normalize_ticker(ticker: str | None) -> str:
    """Strip and uppercase a ticker; synthetic ``CUSTOM:`` tickers are kept as-is."""
    ticker = (ticker or "").strip()
    if ticker.upper().startswith("CUSTOM:"):
        return ticker
    return ticker.upper()


class SecurityService:
    """Find-or-create operations on the Security master list.

    Tickers are global: two providers reporting the same ticker share one
    Security row.
    """

    @staticmethod
    def find_by_ticker(db: Session, ticker: str) -> Security | None:
        return db.query(Security).filter_by(ticker=normalize_ticker(ticker)).first()

    @staticmethod
    def ensure_exists(
        db: Session,
        ticker: str,
        name: Optional[str] = None,
        source: str = "",
    ) -> Security:
        """Ensure a Security record exists for the given ticker.

        Creates the record if it doesn't exist, and fills in ``name`` when the
        existing record has none. A name already on the record is never
        replaced by a provider.

        Args:
            db: Database session
            ticker: The security ticker symbol
            name: Optional security name
            source: Provider reporting the ticker, for error messages

        Returns:
            The Security record (flushed but not committed)

        Raises:
            ImportValidationError: If the ticker is blank.
        """
        ticker = normalize_ticker(ticker)
        if not ticker:
            raise ImportValidationError("security ticker is required", source=source)

        security = db.query(Security).filter_by(ticker=ticker).first()

        if not security:
            security = Security(ticker=ticker, name=name or ticker)
            db.add(security)
            db.flush()
            logger.info("Created security: %s", ticker)
        elif name and not security.name:
            security.name = name
            db.flush()
            logger.info("Filled missing security name: %s -> %s", ticker, name)

        return security
