"""
Identity resolution.

An account can show up on a message under either of its aliases: its phone
number or its account id. Every comparison between a viewer and a message
participant goes through AliasSet membership rather than string equality.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from marketchat.directory import AccountDirectory
from marketchat.models import Account

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AliasSet:
    """The aliases known to refer to one account. Empty parts are dropped."""

    aliases: frozenset[str]

    @classmethod
    def of(cls, *aliases: Optional[str]) -> "AliasSet":
        return cls(frozenset(a for a in aliases if a))

    def __contains__(self, alias: object) -> bool:
        return alias in self.aliases

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.aliases))

    def __len__(self) -> int:
        return len(self.aliases)

    def __bool__(self) -> bool:
        return bool(self.aliases)

    def intersects(self, other: "AliasSet") -> bool:
        return not self.aliases.isdisjoint(other.aliases)

    def union(self, other: Iterable[str]) -> "AliasSet":
        return AliasSet.of(*self.aliases, *other)


class IdentityResolver:
    """Maps accounts and bare aliases to AliasSets."""

    def __init__(self, accounts: AccountDirectory):
        self.accounts = accounts

    def for_account(self, account_id: Optional[str], phone: Optional[str]) -> AliasSet:
        return AliasSet.of(account_id, phone)

    def account_for(self, alias: str) -> Optional[Account]:
        return self.accounts.lookup(alias)

    def resolve(self, alias: str) -> AliasSet:
        """
        Expand a bare alias into the AliasSet of its account.

        Falls back to the singleton {alias} when no account matches; an
        unresolved counterpart is normal (e.g. a buyer without an account
        record) and callers must cope with partial sets.
        """
        account = self.account_for(alias)
        if account is None:
            logger.debug(f"Alias {alias} did not resolve to an account")
            return AliasSet.of(alias)
        return AliasSet.of(alias, account.id, account.phone)
