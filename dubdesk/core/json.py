"""Custom JSON handling."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi.responses import JSONResponse


class DocumentJSONEncoder(json.JSONEncoder):
  """JSON encoder for values stored in JSONB documents and timestamps."""

  def default(self, obj: Any) -> Any:
    if isinstance(obj, Decimal):
      return int(obj) if obj % 1 == 0 else float(obj)
    if isinstance(obj, datetime | date):
      return obj.isoformat()
    return super().default(obj)


class DocumentJSONResponse(JSONResponse):
  """JSONResponse that renders compact UTF-8 with DocumentJSONEncoder."""

  def render(self, content: Any) -> bytes:
    return json.dumps(content, ensure_ascii=False, allow_nan=False, indent=None, separators=(",", ":"), cls=DocumentJSONEncoder).encode("utf-8")
