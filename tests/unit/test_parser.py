import pytest

from costinel.ingest import parser
from costinel.utils.types import Sample


def _payload(code="sz002261", price="10.50", prev="10.20", pct="2.94"):
    fields = ["0"] * 40
    fields[1] = "TALKWEB"
    fields[2] = code[2:]
    fields[3] = price
    fields[4] = prev
    fields[5] = "10.30"
    fields[32] = pct
    fields[33] = "10.66"
    fields[34] = "10.15"
    return f'v_{code}="{"~".join(fields)}";\n'


def test_parse_quote_fields():
    s = parser.parse_quote(_payload(), code="SZ002261")
    assert isinstance(s, Sample)
    assert s.code == "SZ002261" and s.name == "TALKWEB"
    assert s.value == pytest.approx(10.5)
    assert s.percent_change == pytest.approx(2.94)
    assert s.previous_close == pytest.approx(10.2)
    assert (s.open, s.high, s.low) == (pytest.approx(10.3), pytest.approx(10.66), pytest.approx(10.15))


def test_percent_derived_when_missing():
    s = parser.parse_quote(_payload(price="9.00", prev="10.00", pct=""))
    assert s.percent_change == pytest.approx(-10.0)
    assert s.code == "SZ002261"


@pytest.mark.parametrize("text", [
    "",
    "<html>rate limited</html>",
    'v_pv_none_match="1";',
    _payload(price=""),
])
def test_unusable_payloads_raise_value_error(text):
    with pytest.raises(ValueError):
        parser.parse_quote(text, code="SZ999999")


class _QuoteResp:
    def __init__(self, body: bytes, status: int = 200):
        self.body = body
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *a):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise ConnectionError(f"HTTP {self.status}")

    async def read(self):
        return self.body


class _QuoteSession:
    def __init__(self, resp):
        self.resp = resp
        self.urls = []

    def get(self, url):
        self.urls.append(url)
        return self.resp


@pytest.mark.asyncio
async def test_quote_source_decodes_gbk_and_lowercases_code():
    from costinel.ingest.quotes import TencentQuoteSource

    body = _payload().replace("TALKWEB", "拓维信息").encode("gbk")
    session = _QuoteSession(_QuoteResp(body))
    s = await TencentQuoteSource(session=session).quote("SZ002261")
    assert session.urls == ["https://qt.gtimg.cn/q=sz002261"]
    assert s.name == "拓维信息"
    assert s.value == pytest.approx(10.5)


@pytest.mark.asyncio
async def test_quote_source_http_error_propagates():
    from costinel.ingest.quotes import TencentQuoteSource

    session = _QuoteSession(_QuoteResp(b"", status=503))
    with pytest.raises(ConnectionError):
        await TencentQuoteSource(session=session).quote("SZ002261")
