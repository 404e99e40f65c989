"""
Legacy client detection.

Old podcast and feed readers choke on long URLs and large feeds, so requests
from them get shortened URLs and a smaller entry cap.
"""

import re
from dataclasses import dataclass, field

from .config import config


def _matches(signature: str, user_agent: str) -> bool:
    """Substring match; a signature ending in a version digit must end the version number."""
    pattern = re.escape(signature)
    if signature[-1:].isdigit():
        # "iTunes/1" must not match "iTunes/12"
        pattern += r"(?!\d)"
    return re.search(pattern, user_agent) is not None


@dataclass
class LegacyClientPolicy:
    signatures: list[str] = field(default_factory=lambda: list(config.LEGACY_USER_AGENTS))
    legacy_max_entries: int = config.LEGACY_MAX_ENTRIES
    modern_max_entries: int = config.MAX_ENTRIES

    def is_legacy_user_agent(self, user_agent: str | None) -> bool:
        """A missing User-Agent counts as legacy."""
        if not user_agent:
            return True
        return any(_matches(signature, user_agent) for signature in self.signatures)

    def max_entries(self, legacy: bool) -> int:
        return self.legacy_max_entries if legacy else self.modern_max_entries
