from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Sequence

from . import db
from .models import FrontendDeclaration


def parse_declarations(data: Any) -> list[FrontendDeclaration]:
    if not isinstance(data, list):
        raise ValueError("Declarations must be a JSON array.")
    out: list[FrontendDeclaration] = []
    for i, item in enumerate(data):
        try:
            out.append(FrontendDeclaration.from_dict(item))
        except ValueError as e:
            raise ValueError(f"Declaration #{i}: {e}") from e
    return out


class DeclarationStore:
    """JSON file holding the operator's frontend declarations."""

    def __init__(self, path: str):
        self.path = os.path.abspath(path)

    def load(self) -> list[FrontendDeclaration]:
        if not os.path.exists(self.path):
            db.log_event("INFO", f"Writing initial declarations file {self.path}")
            self.save([])
            return []
        with open(self.path, encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as e:
                raise ValueError(f"{self.path} is not valid JSON: {e}") from e
        return parse_declarations(data)

    def save(self, declarations: Sequence[FrontendDeclaration]) -> None:
        parent = os.path.dirname(self.path)
        os.makedirs(parent, exist_ok=True)
        payload = json.dumps([d.to_dict() for d in declarations], indent=2, ensure_ascii=False)

        # Write-then-rename so a crash never leaves a half-written file.
        fd, tmp = tempfile.mkstemp(prefix=".declarations-", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
