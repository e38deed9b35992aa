"""Pull base58 address-shaped tokens out of log text."""

import re
from typing import Iterable

_B58 = "1-9A-HJ-NP-Za-km-z"
# maximal runs only: a 50-char run is not an address, not a 44-char prefix
ADDRESS_RE = re.compile(rf"(?<![{_B58}])[{_B58}]{{32,44}}(?![{_B58}])")


def extract_wallet_addresses(logs: Iterable[str]) -> set[str]:
    found: set[str] = set()
    for line in logs:
        found.update(ADDRESS_RE.findall(line))
    return found
