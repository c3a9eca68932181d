from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


Role = Literal["admin", "coach", "member"]


class Principal(BaseModel):
    # Verified identity for one request; built from a signed token or a checked password only.
    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    role: Role
    email: str
