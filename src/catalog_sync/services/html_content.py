"""Rich-text helpers: local image rewriting and the specifications table."""

from collections.abc import Awaitable, Callable
from html import escape
from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup

from catalog_sync.schemas import SpecificationGroup

logger = structlog.get_logger()

ImageResolver = Callable[[str], Awaitable[str | None]]


def absolute_image_url(src: str, base_url: str) -> str | None:
    """Resolve protocol-relative and path-only sources against ``base_url``."""
    if src.startswith("//"):
        return f"https:{src}"
    if src.startswith(("http://", "https://")):
        return src
    if not base_url:
        return None
    return urljoin(base_url.rstrip("/") + "/", src.lstrip("/"))


async def rewrite_images(html: str, resolve: ImageResolver, site_url: str, base_url: str) -> str:
    """Point every ``<img src>`` at a locally hosted copy.

    Sources that are empty or already under ``site_url`` are left alone. When
    ``resolve`` cannot produce a local URL the original ``src`` is kept.
    """
    if not html or "<img" not in html.lower():
        return html

    soup = BeautifulSoup(html, "html.parser")
    changed = False
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not src or (site_url and src.startswith(site_url)):
            continue

        remote_url = absolute_image_url(src, base_url)
        if remote_url is None:
            logger.warning("Cannot resolve relative image without a base URL", src=src)
            continue

        local_url = await resolve(remote_url)
        if local_url is None:
            logger.error("Failed to download embedded image", src=remote_url)
            continue

        img["src"] = local_url
        changed = True

    return str(soup) if changed else html


def _nl2br(value: str) -> str:
    return value.replace("\r\n", "<br />\n").replace("\n", "<br />\n")


def format_specifications_table(groups: list[SpecificationGroup]) -> str:
    """Render title/detail groups as the storefront's specifications table."""
    html = '<table style="width:100%;" class="common_table_sky">'
    for group in groups:
        if not group.title or not group.details:
            continue
        html += f'<thead><tr><th colspan="2">{escape(group.title)}</th></tr></thead>'
        html += "<tbody>"
        for detail in group.details:
            if not detail.title or not detail.desc:
                continue
            html += (
                f'<tr><td class="align-middle">{escape(detail.title)}</td>'
                f"<td>{_nl2br(escape(detail.desc))}</td></tr>"
            )
        html += "</tbody>"
    html += "</table>"
    return html
