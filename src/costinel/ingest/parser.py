from __future__ import annotations

import re
from typing import Optional

from costinel.utils.time import utc_now_s
from costinel.utils.types import Sample

_LINE = re.compile(r'v_(?P<key>\w+)="(?P<body>[^"]*)"')


def _f(fields: list[str], i: int) -> Optional[float]:
    try:
        s = fields[i].strip()
    except IndexError:
        return None
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        return None


def parse_quote(text: str, code: Optional[str] = None) -> Sample:
    """
    Parse a Tencent quote response into a Sample.

    Payload looks like:
      v_sz002261="51~TUOWEI~002261~10.50~10.20~10.30~...~2.94~10.66~10.15~...";
    Fields used (0-based, '~' separated):
      1 name, 2 code, 3 price, 4 prev close, 5 open,
      32 percent change, 33 high, 34 low
    Raises ValueError on empty/unknown symbols so the caller can retry.
    """
    m = _LINE.search(text or "")
    if m is None:
        raise ValueError("quote payload not recognised")
    body = m.group("body")
    fields = body.split("~")
    if len(fields) < 6:
        # unknown symbols come back as v_pv_none_match="1";
        raise ValueError(f"no quote data for {code or m.group('key')}")

    price = _f(fields, 3)
    if price is None:
        raise ValueError(f"quote for {code or m.group('key')} has no price")
    prev = _f(fields, 4)

    pct = _f(fields, 32)
    if pct is None:
        pct = ((price - prev) / prev * 100.0) if prev else 0.0

    return Sample(
        code=(code or m.group("key")).upper(),
        name=fields[1].strip(),
        value=price,
        percent_change=pct,
        previous_close=prev,
        open=_f(fields, 5),
        high=_f(fields, 33),
        low=_f(fields, 34),
        observed_at=utc_now_s(),
    )
