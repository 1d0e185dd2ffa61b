import unittest

from img_cdn.config import VERSION, Settings
from img_cdn.models import RenderSignals
from img_cdn.pipeline import VERSION_HEADER, CdnPipeline

SITE = "https://site.com"
CONFIG = {"enabled": True, "cdn_domain": "cdn.x.com", "worker_domain": "wk.x.com"}


def start(signals=None, unsafe_checks=(), **overrides):
    pipeline = CdnPipeline(Settings({**CONFIG, **overrides}), SITE)
    return pipeline.start_pass(signals, unsafe_checks)


class TestSingleUrlHooks(unittest.TestCase):
    """Tests for URL, image-source and srcset hooks."""

    def test_single_url(self):
        render_pass = start()
        self.assertEqual(
            render_pass.on_single_url("https://site.com/a.jpg", 12),
            "https://cdn.x.com/site.com/a.jpg",
        )
        self.assertEqual(render_pass.on_single_url("https://site.com/a.pdf"), "https://site.com/a.pdf")

    def test_already_cdn_url_not_rewritten_again(self):
        url = "https://cdn.x.com/site.com/a.jpg"
        self.assertEqual(start().on_single_url(url), url)

    def test_image_src_list(self):
        image = ["https://site.com/a.jpg", 300, 200, True]
        self.assertEqual(
            start().on_image_src(image),
            ["https://cdn.x.com/site.com/a.jpg", 300, 200, True],
        )
        self.assertEqual(image[0], "https://site.com/a.jpg")

    def test_image_src_tuple_and_invalid(self):
        render_pass = start()
        self.assertEqual(
            render_pass.on_image_src(("/a.png", 10, 10)),
            ("https://cdn.x.com/site.com/a.png", 10, 10),
        )
        self.assertIs(render_pass.on_image_src(False), False)
        self.assertEqual(render_pass.on_image_src([]), [])

    def test_srcset(self):
        sources = [
            {"url": "https://site.com/a-300.jpg", "descriptor": "w", "value": 300},
            {"url": "https://site.com/a-600.jpg", "descriptor": "w", "value": 600},
            {"url": "", "descriptor": "w", "value": 900},
        ]
        rewritten = start().on_srcset(sources)
        self.assertEqual(
            [source["url"] for source in rewritten],
            [
                "https://cdn.x.com/site.com/a-300.jpg",
                "https://cdn.x.com/site.com/a-600.jpg",
                "",
            ],
        )
        self.assertEqual(rewritten[0]["value"], 300)
        self.assertEqual(sources[0]["url"], "https://site.com/a-300.jpg")


class TestAttributeAndMarkupHooks(unittest.TestCase):
    """Tests for attribute-set and markup-fragment hooks."""

    def test_attribute_set(self):
        attributes = {"src": "/uploads/photo.jpg", "alt": "Photo", "loading": "lazy"}
        result = start().on_attribute_set(attributes)
        self.assertEqual(result["src"], "https://cdn.x.com/site.com/uploads/photo.jpg")
        self.assertEqual(result["data-original-src"], "https://site.com/uploads/photo.jpg")
        self.assertEqual(result["data-worker-domain"], "wk.x.com")
        self.assertEqual(result["alt"], "Photo")
        self.assertIn("onerror", result)
        self.assertIn("onload", result)
        self.assertEqual(attributes["src"], "/uploads/photo.jpg")

    def test_attribute_set_from_cdn_src_keeps_true_origin(self):
        result = start().on_attribute_set({"src": "https://wk.x.com/site.com/a.jpg"})
        self.assertEqual(result["data-original-src"], "https://site.com/a.jpg")
        self.assertEqual(result["src"], "https://cdn.x.com/site.com/a.jpg")

    def test_attribute_set_without_src(self):
        attributes = {"alt": "x"}
        self.assertEqual(start().on_attribute_set(attributes), attributes)

    def test_markup_fragment(self):
        output = start().on_markup_fragment('<img src="/a.jpg">')
        self.assertIn('data-original-src="https://site.com/a.jpg"', output)

    def test_single_url_passes_through_while_processing(self):
        render_pass = start()
        seen = []

        class Spy(Settings):
            def get(self, key, default=None):
                if key == "worker_domain":
                    seen.append(render_pass.on_single_url("https://site.com/b.jpg"))
                return super().get(key, default)

        spy = Spy(CONFIG)
        render_pass.policy.settings = spy
        render_pass.on_markup_fragment('<img src="/a.jpg">')
        self.assertTrue(seen)
        self.assertEqual(set(seen), {"https://site.com/b.jpg"})


class TestPassThrough(unittest.TestCase):
    """Tests for disabled configurations and unsafe contexts."""

    def test_disabled(self):
        render_pass = start(enabled=False)
        html = '<img src="/a.jpg">'
        self.assertEqual(render_pass.on_markup_fragment(html), html)
        self.assertEqual(render_pass.on_single_url("/a.jpg"), "/a.jpg")
        self.assertEqual(render_pass.on_attribute_set({"src": "/a.jpg"}), {"src": "/a.jpg"})
        self.assertEqual(render_pass.on_page_complete(), "")
        self.assertEqual(render_pass.response_headers(), {})

    def test_unsafe_context(self):
        render_pass = start(RenderSignals(rest_api=True))
        html = '<img src="/a.jpg">'
        self.assertEqual(render_pass.on_markup_fragment(html), html)
        self.assertEqual(render_pass.on_srcset([{"url": "/a.jpg"}]), [{"url": "/a.jpg"}])
        self.assertEqual(render_pass.on_image_src(["/a.jpg"]), ["/a.jpg"])
        self.assertEqual(render_pass.on_page_complete(), "")

    def test_host_override(self):
        render_pass = start(unsafe_checks=[lambda: True])
        self.assertEqual(render_pass.on_single_url("/a.jpg"), "/a.jpg")

    def test_failing_host_check_passes_through(self):
        render_pass = start(unsafe_checks=[lambda: 1 / 0])
        html = '<img src="/a.jpg">'
        with self.assertLogs("img_cdn", level="WARNING"):
            self.assertEqual(render_pass.on_markup_fragment(html), html)
        self.assertEqual(render_pass.on_single_url("/a.jpg"), "/a.jpg")
        self.assertEqual(render_pass.on_page_complete(), "")


class TestPageComplete(unittest.TestCase):
    """Tests for the page-completion output."""

    def test_emitted_once(self):
        render_pass = start()
        output = render_pass.on_page_complete()
        self.assertIn("<script>", output)
        self.assertIn(f"<!-- Image CDN by img-cdn v{VERSION} -->", output)
        self.assertEqual(render_pass.on_page_complete(), "")

    def test_each_pass_emits_its_own(self):
        pipeline = CdnPipeline(Settings(CONFIG), SITE)
        self.assertTrue(pipeline.start_pass().on_page_complete())
        self.assertTrue(pipeline.start_pass().on_page_complete())

    def test_passes_do_not_share_caches(self):
        pipeline = CdnPipeline(Settings(CONFIG), SITE)
        first = pipeline.start_pass()
        first.on_single_url("https://site.com/a.jpg")
        second = pipeline.start_pass()
        self.assertEqual(len(first.policy.cache), 1)
        self.assertEqual(len(second.policy.cache), 0)

    def test_response_headers(self):
        self.assertEqual(start().response_headers(), {VERSION_HEADER: VERSION})


if __name__ == "__main__":
    unittest.main()
