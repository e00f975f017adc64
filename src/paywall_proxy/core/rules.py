import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from pydantic import ValidationError

from ..models import SitePolicy
from .errors import RuleConfigError

DEFAULT_SITES = [
    {
        "name": "Bloomberg",
        "domain": "bloomberg.com",
        "allow_cookies": True,
        "block_pattern": r"(\.cm\.bloomberg\.com/|assets\.bwbx\.io/s\d/javelin/.+/transporter/)",
    },
    {
        "name": "The New York Times",
        "domain": "nytimes.com",
        "allow_cookies": True,
        "block_pattern": (
            r"(\.nytimes\.com/meter\.js|mwcm\.nyt\.com/.+\.js"
            r"|cooking\.nytimes\.com/api/.+/access)"
        ),
        "user_agent": "googlebot",
    },
    {
        "name": "Australia News Corp",
        "domain": "###_au_news_corp",
        "group_members": ["adelaidenow.com.au", "couriermail.com.au"],
        "excluded_members": ["perthnow.com.au"],
        "allow_cookies": True,
        "block_pattern": r"cdn\.ampproject\.org/v\d/amp-subscriptions-.+\.js",
        "user_agent": "googlebot",
    },
    {
        "name": "Poool.fr",
        "domain": "poool.fr",
        "allow_cookies": True,
        "block_pattern_general": r"\.poool\.fr/",
    },
]

DEFAULT_NOFIX = ["lemonde.fr", "nature.com"]


class RuleTable:
    """Immutable site policy registry with its derived lookup indices."""

    def __init__(self, policies: Iterable[SitePolicy], nofix: Iterable[str] = ()):
        self.policies: Tuple[SitePolicy, ...] = tuple(policies)
        self.nofix: FrozenSet[str] = frozenset(nofix)

        seen = set()
        for policy in self.policies:
            if policy.name in seen:
                raise RuleConfigError(f"Duplicate site rule name: {policy.name}")
            seen.add(policy.name)

        self.groups: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {p.domain: p.group_members for p in self.policies if p.group_members}
        )
        self.excluded_hostnames: FrozenSet[str] = frozenset(
            host for p in self.policies for host in p.excluded_members
        )

    def __len__(self) -> int:
        return len(self.policies)

    def __iter__(self):
        return iter(self.policies)

    def resolve(self, hostname: str) -> Tuple[Optional[SitePolicy], bool]:
        """Returns the policy for a hostname and whether it matched via a group.

        Exact domain matches win over group membership; within each kind the
        first policy in declaration order wins.
        """
        for policy in self.policies:
            if policy.domain == hostname:
                return policy, False
        for policy in self.policies:
            if hostname in policy.group_members:
                return policy, True
        return None, False

    def is_nofix(self, hostname: str) -> bool:
        return hostname in self.nofix

    def is_excluded(self, hostname: str) -> bool:
        return hostname in self.excluded_hostnames

    @classmethod
    def from_config(cls, sites: Iterable[Dict[str, Any]], nofix: Iterable[str] = ()) -> "RuleTable":
        policies = []
        for raw in sites:
            try:
                policies.append(SitePolicy.model_validate(raw))
            except ValidationError as e:
                name = raw.get("name", "<unnamed>") if isinstance(raw, dict) else "<invalid>"
                raise RuleConfigError(f"Invalid site rule '{name}': {e}") from e
        return cls(policies, nofix)


def default_rule_table() -> RuleTable:
    return RuleTable.from_config(DEFAULT_SITES, DEFAULT_NOFIX)


def load_rule_table(path: Optional[str] = None) -> RuleTable:
    """
    Builds the rule table from a JSON file, or the embedded defaults.

    The file holds {"sites": [...], "nofix": [...]}; either key may be
    omitted to fall back to the embedded list.
    """
    if not path:
        return default_rule_table()

    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RuleConfigError(f"Couldn't read site rules from {path}: {e}") from e

    if not isinstance(data, dict):
        raise RuleConfigError(f"Site rules in {path} must be a JSON object")

    return RuleTable.from_config(
        data.get("sites", DEFAULT_SITES),
        data.get("nofix", DEFAULT_NOFIX),
    )
