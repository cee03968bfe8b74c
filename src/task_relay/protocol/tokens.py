"""Bidirectional shorthand tables used by the command protocol and the CLI."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class TokenTable:
    """Maps shorthand codes to long-form values and back.

    Long-form values are always accepted as-is. ``extra_long_forms`` lists long values that
    have no shorthand code.
    """

    name: str
    codes: Mapping[str, str]
    extra_long_forms: frozenset[str] = field(default_factory=frozenset)
    case_insensitive: bool = False

    @property
    def long_forms(self) -> frozenset[str]:
        return frozenset(self.codes.values()) | self.extra_long_forms

    def expand(self, token: str) -> str | None:
        """Return the long form for ``token``, or ``None`` when it is not recognised."""

        candidate = token.strip()
        code = candidate.upper() if self.case_insensitive else candidate
        if code in self.codes:
            return self.codes[code]
        value = candidate.lower() if self.case_insensitive else candidate
        if value in self.long_forms:
            return value
        return None

    def abbreviate(self, value: str) -> str:
        """Return the shorthand code for ``value``, or ``value`` itself when it has none."""

        for code, long_form in self.codes.items():
            if long_form == value:
                return code
        return value


STATUS_TOKENS = TokenTable(
    name="status",
    codes={
        "NS": "not-started",
        "INP": "in-progress",
        "NRV": "needs-review",
        "COM": "completed",
        "NCH": "needs-changes",
    },
    extra_long_forms=frozenset({"blocked", "paused", "cancelled"}),
)

ROLE_TOKENS = TokenTable(
    name="role",
    codes={
        "BM": "boomerang",
        "RS": "researcher",
        "AR": "architect",
        "SD": "senior-developer",
        "CR": "code-review",
    },
)

DOCUMENT_TOKENS = TokenTable(
    name="document",
    codes={
        "TD": "task-description",
        "AC": "acceptance-criteria",
        "IP": "implementation-plan",
        "RR": "research-report",
        "CRD": "code-review-report",
        "CP": "completion-report",
        "SUBTASKS": "subtasks-collection",
        "COMMENTS": "comments-collection",
        "DELEGATIONS": "delegation-history",
        "WORKFLOW": "workflow-transitions",
        "STATUS": "status",
        "FULL": "full",
    },
    case_insensitive=True,
)

TOKEN_TABLES = (STATUS_TOKENS, ROLE_TOKENS, DOCUMENT_TOKENS)
