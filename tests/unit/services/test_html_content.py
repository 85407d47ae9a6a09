"""Unit tests for rich-text helpers."""

import pytest

from catalog_sync.schemas import SpecificationDetail, SpecificationGroup
from catalog_sync.services.html_content import (
    absolute_image_url,
    format_specifications_table,
    rewrite_images,
)

SITE = "https://shop.test"
BASE = "https://remote.test"


class Resolver:
    def __init__(self, fail: set[str] | None = None):
        self.fail = fail or set()
        self.calls: list[str] = []

    async def __call__(self, url: str) -> str | None:
        self.calls.append(url)
        if url in self.fail:
            return None
        return f"{SITE}/media/{url.rsplit('/', 1)[-1]}"


class TestAbsoluteImageUrl:
    def test_protocol_relative(self) -> None:
        assert absolute_image_url("//cdn.remote.test/a.png", BASE) == "https://cdn.remote.test/a.png"

    def test_absolute_is_kept(self) -> None:
        assert absolute_image_url("http://x.test/a.png", BASE) == "http://x.test/a.png"

    def test_path_is_joined_to_base(self) -> None:
        assert absolute_image_url("/upload/a.png", BASE) == "https://remote.test/upload/a.png"
        assert absolute_image_url("upload/a.png", BASE + "/") == "https://remote.test/upload/a.png"

    def test_path_without_base(self) -> None:
        assert absolute_image_url("/upload/a.png", "") is None


class TestRewriteImages:
    @pytest.mark.asyncio
    async def test_remote_images_are_localized(self) -> None:
        resolver = Resolver()
        html = '<p>Intro</p><img src="/upload/a.png" alt="A"/>'

        result = await rewrite_images(html, resolver, SITE, BASE)

        assert 'src="https://shop.test/media/a.png"' in result
        assert 'alt="A"' in result
        assert resolver.calls == ["https://remote.test/upload/a.png"]

    @pytest.mark.asyncio
    async def test_local_and_empty_sources_are_skipped(self) -> None:
        resolver = Resolver()
        html = f'<img src="{SITE}/media/x.png"/><img src=""/>'

        result = await rewrite_images(html, resolver, SITE, BASE)

        assert result == html
        assert resolver.calls == []

    @pytest.mark.asyncio
    async def test_failed_download_keeps_original_src(self) -> None:
        resolver = Resolver(fail={"https://remote.test/b.png"})
        html = '<img src="https://remote.test/b.png"/><img src="https://remote.test/c.png"/>'

        result = await rewrite_images(html, resolver, SITE, BASE)

        assert 'src="https://remote.test/b.png"' in result
        assert 'src="https://shop.test/media/c.png"' in result

    @pytest.mark.asyncio
    async def test_html_without_images_is_untouched(self) -> None:
        resolver = Resolver()
        html = "<p>No pictures &amp; no problem</p>"

        assert await rewrite_images(html, resolver, SITE, BASE) == html
        assert await rewrite_images("", resolver, SITE, BASE) == ""
        assert resolver.calls == []


class TestSpecificationsTable:
    def test_renders_groups_and_rows(self) -> None:
        groups = [
            SpecificationGroup(
                title="Ports",
                details=[
                    SpecificationDetail(title="LAN", desc="8 x 10/100/1000\n2 x SFP"),
                    SpecificationDetail(title="Console", desc="RJ45"),
                ],
            )
        ]

        html = format_specifications_table(groups)

        assert html.startswith('<table style="width:100%;" class="common_table_sky">')
        assert '<th colspan="2">Ports</th>' in html
        assert '<td class="align-middle">LAN</td><td>8 x 10/100/1000<br />\n2 x SFP</td>' in html
        assert html.endswith("</tbody></table>")

    def test_values_are_escaped(self) -> None:
        groups = [SpecificationGroup(title="A & B", details=[SpecificationDetail(title="<x>", desc="1 < 2")])]

        html = format_specifications_table(groups)

        assert "A &amp; B" in html
        assert "&lt;x&gt;" in html
        assert "1 &lt; 2" in html

    def test_incomplete_groups_and_rows_are_skipped(self) -> None:
        groups = [
            SpecificationGroup(title="", details=[SpecificationDetail(title="a", desc="b")]),
            SpecificationGroup(title="Empty", details=[]),
            SpecificationGroup(title="Power", details=[SpecificationDetail(title="Input", desc="")]),
        ]

        html = format_specifications_table(groups)

        assert "Empty" not in html
        assert '<th colspan="2">Power</th>' in html
        assert "Input" not in html
