"""Bounded memory of recently processed transaction signatures."""


class DedupCache:
    """Insertion-ordered signature set.

    Once the size passes ``capacity`` the oldest entries are dropped, keeping
    the newest ``capacity // 2``. Seeing a signature again does not refresh it.
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 2:
            raise ValueError("capacity must be at least 2")
        self.capacity = capacity
        self._seen: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, signature: str) -> bool:
        return signature in self._seen

    def add_if_absent(self, signature: str) -> bool:
        """Record ``signature``; False means it was already processed."""
        if signature in self._seen:
            return False
        self._seen[signature] = None
        if len(self._seen) > self.capacity:
            keep = list(self._seen)[-(self.capacity // 2):]
            self._seen = dict.fromkeys(keep)
        return True
