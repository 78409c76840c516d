"""Authenticated principal handed to the commission core.

The core never authenticates anyone: the HTTP layer (or a task) builds a
:class:`Principal` from an already-authenticated user and passes it down.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    id: str
    company_id: str | None
    is_admin: bool = False
    is_manager: bool = False
    label: str = ""

    @classmethod
    def from_user(cls, user) -> "Principal":
        is_admin = bool(getattr(user, "is_superuser", False) or getattr(user, "role", None) == "ADMIN")
        return cls(
            id=str(user.pk),
            company_id=str(user.company_id) if getattr(user, "company_id", None) else None,
            is_admin=is_admin,
            is_manager=is_admin or getattr(user, "role", None) == "MANAGER",
            label=getattr(user, "email", "") or str(user.pk),
        )

    def same_company(self, company_id) -> bool:
        return self.company_id is not None and str(company_id) == self.company_id
