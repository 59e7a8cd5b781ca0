"""Field-lock mixin shared by ledger rows that providers enrich."""

from datetime import datetime, timezone


class LockableMixin:
    """Tracks which fields a user has overridden.

    ``locked_attributes`` maps a field name to the ISO timestamp at which it
    was locked. Provider syncs must leave locked fields alone. The mapping is
    always replaced, never mutated in place, so the ORM sees the change.
    """

    def is_locked(self, attr: str) -> bool:
        return bool((self.locked_attributes or {}).get(attr))

    def lock_attr(self, attr: str) -> None:
        locked = dict(self.locked_attributes or {})
        locked[attr] = datetime.now(timezone.utc).isoformat()
        self.locked_attributes = locked

    def unlock_attr(self, attr: str) -> None:
        locked = dict(self.locked_attributes or {})
        locked.pop(attr, None)
        self.locked_attributes = locked

    def enrich_attribute(self, attr: str, value) -> bool:
        """Set ``attr`` to ``value`` unless it is locked.

        Returns:
            True if the value changed.
        """
        if self.is_locked(attr):
            return False
        if getattr(self, attr) == value:
            return False
        setattr(self, attr, value)
        return True
