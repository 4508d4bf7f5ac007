from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

import structlog

from costinel.ingest.browser import PageTextExtractor
from costinel.utils.errors import ConfigurationError, ElementNotFound
from costinel.utils.time import utc_now_s
from costinel.utils.types import Sample, Subject

log = structlog.get_logger("products")


@dataclass(frozen=True, slots=True)
class SiteConfig:
    """How to read stock state off one storefront."""
    selector: str
    out_of_stock_text: str = "Out of Stock"
    wait_s: float = 3.0


def resolve_site(site: Optional[str], sites: Mapping[str, SiteConfig]) -> SiteConfig:
    """Exact host first, then the 'app.' storefront variant."""
    if site:
        if site in sites:
            return sites[site]
        if f"app.{site}" in sites:
            return sites[f"app.{site}"]
    raise ConfigurationError(f"no site configuration for {site!r}")


class ProductProbe:
    """
    Turns a product page into a Sample: value 1.0 when in stock, 0.0 when the
    out-of-stock marker is present. A page without the stock element is an
    error (retryable), not an out-of-stock verdict.
    """
    def __init__(self, extractor: PageTextExtractor, sites: Mapping[str, SiteConfig]):
        self.extractor = extractor
        self.sites = dict(sites)

    async def sample(self, subject: Subject) -> Sample:
        site = resolve_site(subject.site, self.sites)
        url = subject.url or subject.id
        text = await self.extractor.extract(url, site.selector, site.wait_s)
        if not text:
            raise ElementNotFound(f"element not found: {site.selector}")
        in_stock = site.out_of_stock_text not in text
        log.debug("product_state", product=subject.name, in_stock=in_stock)
        return Sample(
            code=subject.id,
            name=subject.name,
            value=1.0 if in_stock else 0.0,
            url=url,
            in_stock=in_stock,
            observed_at=utc_now_s(),
        )
