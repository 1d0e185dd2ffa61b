import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from img_cdn import cli
from img_cdn.warmup import WarmResult

SITE = "https://site.com"


class TestCli(unittest.TestCase):
    """Tests for the command-line entry point."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.config = self.tmp / "settings.json"
        self.config.write_text(
            json.dumps({"enabled": True, "cdn_domain": "cdn.x.com", "worker_domain": "wk.x.com"}),
            encoding="utf-8",
        )

    def tearDown(self):
        self._tmp.cleanup()

    def run_cli(self, *argv):
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            cli.main(list(argv))
        return buffer.getvalue()

    def test_rewrite_file(self):
        source = self.tmp / "page.html"
        target = self.tmp / "out.html"
        source.write_text('<p><img src="/uploads/photo.jpg"></p>', encoding="utf-8")
        self.run_cli(
            "rewrite", str(source), "--site", SITE, "--config", str(self.config), "--output", str(target)
        )
        result = target.read_text(encoding="utf-8")
        self.assertIn('src="https://cdn.x.com/site.com/uploads/photo.jpg"', result)
        self.assertIn("<script>", result)
        self.assertIn("<!-- Image CDN by img-cdn v", result)

    def test_rewrite_is_default_command(self):
        source = self.tmp / "page.html"
        source.write_text('<img src="/a.jpg">', encoding="utf-8")
        output = self.run_cli(
            str(source), "--site", SITE, "--config", str(self.config), "--no-script", "--patterns"
        )
        self.assertTrue(output.startswith('<img src="https://cdn.x.com/site.com/a.jpg" '))
        self.assertNotIn("<script>", output)

    def test_url(self):
        output = self.run_cli(
            "url", "/a.jpg", "https://site.com/doc.pdf", "--site", SITE, "--config", str(self.config)
        )
        self.assertEqual(
            output.splitlines(),
            ["https://cdn.x.com/site.com/a.jpg", "https://site.com/doc.pdf"],
        )

    def test_script(self):
        output = self.run_cli("script")
        self.assertTrue(output.startswith("<script>"))

    def test_config_updates_file(self):
        output = self.run_cli(
            "config",
            "--config",
            str(self.config),
            "--set",
            "allowed_domains=site.com, cdn.site.com",
            "--set",
            "debug=true",
        )
        shown = json.loads(output)
        self.assertEqual(shown["allowed_domains"], ["site.com", "cdn.site.com"])
        stored = json.loads(self.config.read_text(encoding="utf-8"))
        self.assertTrue(stored["debug"])

    def test_config_use_cloud(self):
        target = self.tmp / "fresh.json"
        self.run_cli("config", "--config", str(target), "--use-cloud")
        stored = json.loads(target.read_text(encoding="utf-8"))
        self.assertEqual(stored["cdn_domain"], "wp.img.pro")
        self.assertTrue(stored["enabled"])

    def test_bad_assignment_exits(self):
        with self.assertRaises(SystemExit) as ctx:
            self.run_cli("config", "--config", str(self.config), "--set", "debug")
        self.assertEqual(ctx.exception.code, 2)

    def test_invalid_settings_file_exits(self):
        self.config.write_text("{broken", encoding="utf-8")
        with self.assertRaises(SystemExit) as ctx:
            self.run_cli("url", "/a.jpg", "--site", SITE, "--config", str(self.config))
        self.assertEqual(ctx.exception.code, 2)

    def test_warm_exit_code(self):
        ok = WarmResult("https://site.com/a.jpg", "https://wk.x.com/site.com/a.jpg", 200)
        failed = WarmResult("https://site.com/b.jpg", "https://wk.x.com/site.com/b.jpg", 502, "502")
        with mock.patch.object(cli, "warm_urls", return_value=[ok]):
            with self.assertRaises(SystemExit) as ctx:
                self.run_cli("warm", "/a.jpg", "--site", SITE, "--config", str(self.config))
        self.assertEqual(ctx.exception.code, 0)
        with mock.patch.object(cli, "warm_urls", return_value=[ok, failed]):
            with self.assertRaises(SystemExit) as ctx:
                self.run_cli("warm", "/a.jpg", "/b.jpg", "--site", SITE, "--config", str(self.config))
        self.assertEqual(ctx.exception.code, 1)


if __name__ == "__main__":
    unittest.main()
