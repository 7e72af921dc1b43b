"""CLI tests using click's CliRunner."""

import pytest
from click.testing import CliRunner

from fakes import MockBluesky, feed_body, feed_item, images_embed, post_json
from skyharvest.api import BlueskyAPI
from skyharvest.cli import cli
from skyharvest.config import BlueskyConfig
from skyharvest.harvester import Harvester
from skyharvest.store import ArchivedPostRecord, ArchiveStore

CFG = BlueskyConfig(api_base="https://pds.test/xrpc")

PAGES = {None: feed_body([feed_item(post_json("1", embed=images_embed("bafkreione")))])}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("BLUESKY_USERNAME", "BLUESKY_APP_PASSWORD", "SKYHARVEST_OUTPUT", "BLUESKY_API_BASE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mocked(monkeypatch):
    """Route every Harvester the CLI builds through a mocked PDS."""
    state = {"mock": MockBluesky(PAGES), "configs": []}

    def factory(cfg):
        cfg.show_progress = False
        state["configs"].append(cfg)
        api = BlueskyAPI(CFG, transport=state["mock"].transport())
        return Harvester(cfg, api=api, sleep_fn=lambda s: None)

    monkeypatch.setattr("skyharvest.cli.Harvester", factory)
    return state


class TestHarvestCommands:
    def test_likes(self, runner, mocked, tmp_path):
        out = tmp_path / "archive"
        result = runner.invoke(cli, ["-u", "@viewer.bsky.social", "-p", "pw", "-o", str(out), "likes", "-l", "0"])

        assert result.exit_code == 0, result.output
        assert "Archive complete" in result.output
        assert "Downloaded" in result.output
        cfg = mocked["configs"][0]
        assert cfg.username == "viewer.bsky.social"
        assert cfg.mode == "likes"
        assert cfg.limit == 0
        assert (out / "archive.db").exists()

    def test_user_with_options(self, runner, mocked, tmp_path):
        result = runner.invoke(
            cli,
            ["-u", "viewer.bsky.social", "-p", "pw", "-o", str(tmp_path / "a"),
             "user", "@bob.bsky.social", "--limit", "5", "--delay", "250", "--nsfw-only", "--resume"],
        )

        assert result.exit_code == 0, result.output
        cfg = mocked["configs"][0]
        assert cfg.actor == "bob.bsky.social"
        assert cfg.mode == "feed"
        assert cfg.delay == 0.25
        assert cfg.nsfw_only and cfg.resume
        (req,) = mocked["mock"].feed_requests()
        assert req.url.params["actor"] == "bob.bsky.social"

    def test_credentials_from_environment(self, runner, mocked, tmp_path, monkeypatch):
        monkeypatch.setenv("BLUESKY_USERNAME", "viewer.bsky.social")
        monkeypatch.setenv("BLUESKY_APP_PASSWORD", "pw")
        monkeypatch.setenv("SKYHARVEST_OUTPUT", str(tmp_path / "env-out"))

        result = runner.invoke(cli, ["likes"])

        assert result.exit_code == 0, result.output
        assert (tmp_path / "env-out" / "archive.db").exists()

    def test_missing_credentials(self, runner, tmp_path):
        result = runner.invoke(cli, ["-o", str(tmp_path), "likes"])
        assert result.exit_code == 2
        assert "Missing --username" in result.output

        result = runner.invoke(cli, ["-u", "viewer.bsky.social", "-o", str(tmp_path), "likes"])
        assert result.exit_code == 2
        assert "Missing --password" in result.output

    def test_negative_limit_rejected(self, runner, tmp_path):
        result = runner.invoke(cli, ["-u", "a", "-p", "b", "-o", str(tmp_path), "likes", "--limit", "-1"])
        assert result.exit_code == 2

    def test_failure_exits_nonzero(self, runner, mocked, tmp_path):
        mocked["mock"].login_status = 401
        result = runner.invoke(cli, ["-u", "viewer.bsky.social", "-p", "bad", "-o", str(tmp_path), "likes"])
        assert result.exit_code == 1
        assert "Login failed" in result.output


class TestStatsCommand:
    def test_reports_counts(self, runner, tmp_path):
        with ArchiveStore.open(tmp_path / "archive.db") as store:
            store.upsert_post(
                ArchivedPostRecord(
                    uri="at://did:plc:a/app.bsky.feed.post/1",
                    cid="bafyrei1",
                    author_did="did:plc:a",
                    author_handle="a.bsky.social",
                    post_text=None,
                    image_count=0,
                    post_created_at="2024-01-01T00:00:00Z",
                )
            )

        result = runner.invoke(cli, ["-o", str(tmp_path), "stats"])

        assert result.exit_code == 0, result.output
        assert "Posts" in result.output
        assert "Images" in result.output

    def test_missing_archive(self, runner, tmp_path):
        result = runner.invoke(cli, ["-o", str(tmp_path / "nothing"), "stats"])
        assert result.exit_code == 1
        assert "No archive found" in result.output
