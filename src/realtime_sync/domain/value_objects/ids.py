from __future__ import annotations

import uuid
from typing import Union

EntityId = Union[int, str]
StreamKey = Union[int, str]

PROVISIONAL_PREFIX = "local-"


def new_provisional_id() -> str:
    return f"{PROVISIONAL_PREFIX}{uuid.uuid4().hex}"
