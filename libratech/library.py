from typing import Optional

from libratech import database
from libratech.catalog import Catalog
from libratech.database import initialize_database
from libratech.inventory import InventoryController
from libratech.ledger import LoanLedger


class Library:
    """Wires the catalog, the loan ledger and the inventory controller to one database file."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # None means "whatever database.DATABASE_FILE points at when a call is made",
        # which lets tests and the CLI repoint the module default.
        self.db_file = db_file
        initialize_database(db_file)

        self.catalog = Catalog(db_file)
        self.ledger = LoanLedger(db_file)
        self.inventory = InventoryController(self.catalog, self.ledger)

    @property
    def location(self) -> str:
        return self.db_file or database.DATABASE_FILE

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
