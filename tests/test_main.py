"""Tests for main.py CLI functionality."""

import json
from unittest.mock import Mock, patch

import pytest

from cdn_variants.core import ConfigurationError
from cdn_variants.core.batch import BatchProgress
from cdn_variants.core.factories import ProcessingPipelineFactory
from cdn_variants.core.models import DEFAULT_VARIANTS, ImageFormat
from cdn_variants.core.observability import MetricsCollector
from cdn_variants.main import main, parse_tags, select_variants, step_metrics
from cdn_variants.testing.fakes import create_test_image


@pytest.fixture
def cli(settings, pipeline):
    """Run main() with fixed argv, test settings and the fake-backed pipeline."""

    def _run(*argv):
        with patch("sys.argv", ["cdn-variants", *argv]):
            with patch("cdn_variants.main.PipelineSettings", return_value=settings):
                with patch(
                    "cdn_variants.main.ProcessingPipelineFactory.create_pipeline",
                    return_value=pipeline,
                ):
                    with patch("sys.exit") as mock_exit:
                        main()
        mock_exit.assert_called_once()
        return mock_exit.call_args.args[0]

    return _run


class TestMainCLI:
    """Tests for the main CLI functionality."""

    def test_main_with_no_args_shows_help(self):
        """Test that running main without arguments shows help."""
        with patch("sys.argv", ["cdn-variants"]):
            with patch("argparse.ArgumentParser.print_help") as mock_help:
                with patch("sys.exit") as mock_exit:
                    main()
                    mock_help.assert_called_once()
                    mock_exit.assert_called_once_with(1)

    def test_main_version_command(self):
        """Test version command output."""
        with patch("sys.argv", ["cdn-variants", "version"]):
            with patch("builtins.print") as mock_print:
                with patch("sys.exit") as mock_exit:
                    main()
                    mock_print.assert_any_call("cdn-variants CLI")
                    mock_print.assert_any_call("Version 0.1.0")
                    mock_exit.assert_called_once_with(0)

    def test_unknown_processor_rejected(self):
        """argparse rejects strategies that do not exist."""
        with patch("sys.argv", ["cdn-variants", "batch", "x.json", "--processor", "ray"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 2

    @pytest.mark.parametrize("value", ["0", "-1", "five"])
    def test_non_positive_batch_size_rejected(self, value):
        """argparse rejects batch sizes below one."""
        with patch("sys.argv", ["cdn-variants", "batch", "x.json", "--batch-size", value]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 2


class TestProcessCommand:
    """Tests for the process subcommand."""

    def test_process_local_file(self, cli, tmp_path, capsys, fake_s3):
        path = tmp_path / "photo.jpg"
        path.write_bytes(create_test_image(640, 480))

        exit_code = cli("process", str(path), "--variant", "thumbnail", "--tag", "listing=42")

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["status"] == "success"
        assert list(summary["results"]) == ["thumbnail"]
        stored = fake_s3.get_blob("test-bucket", summary["results"]["thumbnail"]["path"])
        assert stored.metadata["listing"] == "42"

    def test_process_overrides(self, cli, tmp_path, capsys):
        path = tmp_path / "photo.jpg"
        path.write_bytes(create_test_image(640, 480))

        cli("process", str(path), "--variant", "full", "--format", "png", "--max-width", "100")

        summary = json.loads(capsys.readouterr().out)
        assert summary["results"]["full"]["path"].endswith(".png")

    def test_process_failure_exit_code(self, cli, tmp_path, capsys):
        exit_code = cli("process", str(tmp_path / "missing.jpg"))
        assert exit_code == 1
        assert json.loads(capsys.readouterr().out)["status"] == "failed"

    def test_process_partial_failure_exit_code(self, settings, capsys):
        result = Mock(status="partial_failure", is_partial_failure=True)
        result.summary.return_value = {"status": "partial_failure"}
        pipeline = Mock()
        pipeline.run.return_value = result

        with patch("sys.argv", ["cdn-variants", "process", "a.jpg"]):
            with patch("cdn_variants.main.PipelineSettings", return_value=settings):
                with patch(
                    "cdn_variants.main.ProcessingPipelineFactory.create_pipeline",
                    return_value=pipeline,
                ):
                    with patch("sys.exit") as mock_exit:
                        main()

        mock_exit.assert_called_once_with(2)

    def test_invalid_tag(self, cli):
        assert cli("process", "a.jpg", "--tag", "no-equals-sign") == 1

    def test_unexpected_error_exits_with_failure(self, settings):
        with patch("sys.argv", ["cdn-variants", "process", "a.jpg"]):
            with patch("cdn_variants.main.PipelineSettings", return_value=settings):
                with patch(
                    "cdn_variants.main.ProcessingPipelineFactory.create_pipeline",
                    side_effect=RuntimeError("no credentials"),
                ):
                    with patch("sys.exit") as mock_exit:
                        main()

        mock_exit.assert_called_once_with(1)


class TestBatchCommand:
    """Tests for the batch subcommand."""

    def test_batch_rewrites_catalog(self, cli, tmp_path, fake_session, capsys):
        urls = [f"https://images.example.com/{i}.jpg" for i in range(3)]
        for url in urls:
            fake_session.add_response(url, create_test_image(300, 200))
        catalog = [{"id": i, "imageUrl": url} for i, url in enumerate(urls)]
        catalog_path = tmp_path / "catalog.json"
        catalog_path.write_text(json.dumps(catalog))
        output = tmp_path / "optimized.json"
        progress = tmp_path / "state.json"

        exit_code = cli(
            "batch",
            str(catalog_path),
            "--processor",
            "multithread",
            "--progress",
            str(progress),
            "--variant",
            "full",
            "--output",
            str(output),
        )

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["total"] == 3
        assert summary["succeeded"] == 3
        rewritten = json.loads(output.read_text())
        assert all(
            item["imageUrl"].startswith("https://cdn.example.com/images/full/")
            for item in rewritten
        )
        assert BatchProgress.load(str(progress)).processed == urls

    def test_batch_with_failures_exits_partial(self, cli, tmp_path):
        sources = tmp_path / "sources.txt"
        sources.write_text("https://images.example.com/missing.jpg\n")

        exit_code = cli("batch", str(sources), "--progress", str(tmp_path / "state.json"))

        assert exit_code == 2


class TestSelectVariants:
    def test_defaults(self):
        assert select_variants(None) == dict(DEFAULT_VARIANTS)

    def test_named_subset_with_overrides(self):
        variants = select_variants(["thumbnail"], format="avif", quality=40)

        assert list(variants) == ["thumbnail"]
        assert variants["thumbnail"].format is ImageFormat.AVIF
        assert variants["thumbnail"].quality == 40
        assert variants["thumbnail"].max_width == DEFAULT_VARIANTS["thumbnail"].max_width

    def test_invalid_override(self):
        with pytest.raises(ValueError):
            select_variants(["full"], quality=0)


class TestParseTags:
    def test_pairs(self):
        assert parse_tags(["a=1", " b = two "]) == {"a": "1", "b": "two"}

    def test_value_may_contain_equals(self):
        assert parse_tags(["q=x=y"]) == {"q": "x=y"}

    @pytest.mark.parametrize("pair", ["novalue", "=x"])
    def test_invalid(self, pair):
        with pytest.raises(ConfigurationError):
            parse_tags([pair])


class TestStepMetrics:
    """Per-step metrics are collected for CLI runs."""

    def test_process_collects_step_metrics(self, settings, fake_s3, fake_session, fake_logger, tmp_path):
        path = tmp_path / "photo.jpg"
        path.write_bytes(create_test_image(300, 200))
        real_create = ProcessingPipelineFactory.create_pipeline
        collectors = []

        def build(settings, metrics_collector=None):
            collectors.append(metrics_collector)
            return real_create(
                settings,
                s3_client=fake_s3,
                session=fake_session,
                logger=fake_logger,
                metrics_collector=metrics_collector,
            )

        with patch("sys.argv", ["cdn-variants", "process", str(path), "--variant", "thumbnail"]):
            with patch("cdn_variants.main.PipelineSettings", return_value=settings):
                with patch(
                    "cdn_variants.main.ProcessingPipelineFactory.create_pipeline", side_effect=build
                ):
                    with patch("sys.exit") as mock_exit:
                        main()

        mock_exit.assert_called_once_with(0)
        assert isinstance(collectors[0], MetricsCollector)
        summary = step_metrics(collectors[0])
        assert set(summary) == {"fetch_source", "transcode", "dedup_or_upload"}
        assert summary["transcode"]["successful_operations"] == 1

    def test_step_metrics_empty(self):
        assert step_metrics(MetricsCollector()) == {}
