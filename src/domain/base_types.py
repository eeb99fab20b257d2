from __future__ import annotations

from typing import NewType

AssetId = NewType("AssetId", str)
EventId = NewType("EventId", str)
CurrencyCode = NewType("CurrencyCode", str)
