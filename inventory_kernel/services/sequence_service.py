"""
SequenceService -- allocation of the ledger's ``seq`` numbers.

Responsibility:
    Hands out the strictly increasing ``seq`` that totally orders stock
    movements.  The next value lives in a counter row that is locked
    (``SELECT ... FOR UPDATE``) for the rest of the appending transaction,
    so two concurrent appends can never draw the same number.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by LedgerService.append().

Invariants enforced:
    - A counter row, once it exists, is the only source of the next value.
    - A counter row created against a non-empty ledger (a restored
      database, or movements loaded by a bulk import) starts at the
      highest persisted ``seq``, so existing numbers are never handed out
      again.
    - A rolled back append gives its number back; gaps only appear for
      numbers consumed by committed transactions.

Failure modes:
    - ValueError: sequence name is not one the ledger uses.
    - IntegrityError: lost counter creation race (retried once under a
      savepoint; re-raised if the row still cannot be read).
"""

from sqlalchemy import BigInteger, String, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.movement import StockMovement

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Current value of one named ledger sequence."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Allocates movement ``seq`` values inside the caller's transaction.

    Usage:
        seq = SequenceService(session).next_movement_seq()
        # rolled back with the caller if the append fails
    """

    STOCK_MOVEMENT = "stock_movement"

    # sequence name -> column whose maximum seeds a new counter
    _SEEDS = {STOCK_MOVEMENT: StockMovement.seq}

    def __init__(self, session: Session):
        self._session = session

    def next_movement_seq(self) -> int:
        return self.next_value(self.STOCK_MOVEMENT)

    def last_movement_seq(self) -> int:
        """Highest ``seq`` handed out so far (0 for an empty ledger)."""
        value = self.current_value(self.STOCK_MOVEMENT)
        return value if value is not None else self._seed(self.STOCK_MOVEMENT)

    def next_value(self, sequence_name: str) -> int:
        """Lock the counter (creating it on first use) and return its next value."""
        self._check_name(sequence_name)
        counter = self._locked_counter(sequence_name)
        if counter is None:
            counter = self._create_counter(sequence_name)

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current counter value without incrementing, or None if never used."""
        self._check_name(sequence_name)
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def _check_name(self, sequence_name: str) -> None:
        if sequence_name not in self._SEEDS:
            raise ValueError(f"Unknown sequence: {sequence_name!r}")

    def _seed(self, sequence_name: str) -> int:
        column = self._SEEDS[sequence_name]
        return self._session.execute(select(func.max(column))).scalar() or 0

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, sequence_name: str) -> SequenceCounter:
        # Savepoint so a lost creation race doesn't roll back the caller's work
        seed = self._seed(sequence_name)
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=seed)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = self._locked_counter(sequence_name)
            if counter is None:
                raise
            return counter

        if seed:
            logger.warning(
                "sequence_counter_seeded",
                extra={"sequence_name": sequence_name, "seed": seed},
            )
        return counter
