# src/costinel/notify/console.py
from __future__ import annotations

import re

# Telegram HTML tags are noise on a terminal
_TAGS = re.compile(r"</?(b|i|u|s|code|pre|a)( [^>]*)?>")


class ConsoleChannel:
    name = "console"

    def __init__(self, strip_html: bool = True):
        self._strip_html = strip_html

    async def send(self, text: str) -> bool:
        if self._strip_html:
            text = _TAGS.sub("", text)
        print(text, flush=True)
        return True
