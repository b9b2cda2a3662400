"""Tests for pipeline orchestration."""

from pathlib import Path

import pytest
from PIL import Image

from lethal_gen import core
from lethal_gen.core import (
    GenerationPipeline,
    JobOutcome,
    JobState,
    RunReport,
    generate_pair,
    resolve_workers,
)
from lethal_gen.errors import (
    CompositeError,
    DecodeError,
    DuplicateSourceError,
    InputDirectoryError,
    InvalidImageError,
)
from lethal_gen.loader import SourceImage
from lethal_gen.templates import PlacementRegion, Template, TemplateRegistry, TemplateSpec
from lethal_gen.writer import OutputWriter
from tests.imaging import (
    BLUE,
    POSTER_A,
    RED,
    TEMPLATE_COLOR,
    assert_close,
    region_pixels,
    save_solid,
    save_split,
    write_templates,
)


PAINTING_B = TemplateSpec(
    name="painting_b",
    category="paintings",
    filename="painting_b.png",
    region=PlacementRegion(20, 30, 60, 60),
)


def make_pipeline(template_dir, output_dir, specs=(POSTER_A,), **kwargs):
    registry = TemplateRegistry.load(template_dir, specs)
    return GenerationPipeline(registry, OutputWriter(output_dir), **kwargs)


class TestEndToEnd:
    def test_poster_a_cat(self, template_dir, input_dir, output_dir):
        save_split(input_dir / "cat.png", (200, 100), left=RED, right=BLUE)

        report = make_pipeline(template_dir, output_dir).run(input_dir)

        assert report.succeeded == 1
        assert report.failed == 0
        assert report.exit_code() == 0
        expected = output_dir / "posters" / "poster_a_cat.png"
        assert report.outcomes[0].output_path == expected

        with Image.open(expected) as img:
            assert img.size == (120, 180)
            img = img.convert("RGBA")
            # Outside the (10,10)-(110,160) region the template is untouched.
            assert img.getpixel((5, 5)) == TEMPLATE_COLOR
            assert img.getpixel((115, 170)) == TEMPLATE_COLOR
            # Cover-fit: no template background shows inside the region.
            assert TEMPLATE_COLOR not in region_pixels(img, POSTER_A.region)
            # Center crop keeps the middle of the 200x100 image: red left, blue right.
            assert_close(img.getpixel((10, 85)), RED)
            assert_close(img.getpixel((109, 85)), BLUE)

    def test_every_template_gets_every_image(self, tmp_path, input_dir, output_dir):
        template_dir = write_templates(tmp_path / "templates", [POSTER_A, PAINTING_B])
        save_solid(input_dir / "a.png", (50, 80))
        save_solid(input_dir / "b.jpg", (640, 480), mode="RGB")

        report = make_pipeline(template_dir, output_dir, specs=(POSTER_A, PAINTING_B)).run(
            input_dir
        )

        assert [(o.source_name, o.template_name) for o in report.outcomes] == [
            ("a", "poster_a"),
            ("a", "painting_b"),
            ("b", "poster_a"),
            ("b", "painting_b"),
        ]
        assert all(o.state is JobState.SUCCEEDED for o in report.outcomes)
        for name in ("poster_a_a.png", "poster_a_b.png"):
            assert (output_dir / "posters" / name).is_file()
        for name in ("painting_b_a.png", "painting_b_b.png"):
            assert (output_dir / "paintings" / name).is_file()

    @pytest.mark.parametrize("size", [(1, 1), (600, 4), (4, 600), (100, 150), (640, 480)])
    def test_output_always_has_template_dimensions(self, template_dir, input_dir, output_dir, size):
        save_solid(input_dir / "src.png", size)

        report = make_pipeline(template_dir, output_dir).run(input_dir)

        with Image.open(report.outcomes[0].output_path) as img:
            assert img.size == (120, 180)

    def test_empty_input(self, template_dir, input_dir, output_dir):
        report = make_pipeline(template_dir, output_dir).run(input_dir)

        assert report.outcomes == []
        assert report.exit_code() == 0
        assert not output_dir.exists() or not any(output_dir.rglob("*.*"))

    def test_rerun_is_byte_identical(self, template_dir, input_dir, output_dir):
        save_split(input_dir / "cat.png", (200, 100))
        save_solid(input_dir / "dog.jpg", (333, 517), mode="RGB")
        pipeline = make_pipeline(template_dir, output_dir)

        first = {o.output_path: o.output_path.read_bytes() for o in pipeline.run(input_dir).outcomes}
        second = {o.output_path: o.output_path.read_bytes() for o in pipeline.run(input_dir).outcomes}

        assert first == second
        assert len(list((output_dir / "posters").iterdir())) == 2

    def test_missing_input_directory(self, template_dir, tmp_path, output_dir):
        with pytest.raises(InputDirectoryError):
            make_pipeline(template_dir, output_dir).run(tmp_path / "missing")


class TestIsolation:
    def test_one_corrupt_input_among_valid_ones(self, template_dir, input_dir, output_dir):
        for name in ("a.png", "b.png", "c.png"):
            save_solid(input_dir / name, (64, 64))
        (input_dir / "broken.png").write_bytes(b"garbage")

        report = make_pipeline(template_dir, output_dir).run(input_dir)

        assert report.succeeded == 3
        assert report.failed == 1
        assert report.exit_code() == 1
        assert report.exit_code(fail_on_error=False) == 0
        failure = report.failures[0]
        assert failure.source_name == "broken"
        assert isinstance(failure.error, DecodeError)
        assert failure.reason.startswith("DecodeError")
        assert sorted(p.name for p in (output_dir / "posters").iterdir()) == [
            "poster_a_a.png",
            "poster_a_b.png",
            "poster_a_c.png",
        ]

    def test_decode_failure_fails_each_template_pair(self, tmp_path, input_dir, output_dir):
        template_dir = write_templates(tmp_path / "templates", [POSTER_A, PAINTING_B])
        (input_dir / "broken.png").write_bytes(b"garbage")

        report = make_pipeline(template_dir, output_dir, specs=(POSTER_A, PAINTING_B)).run(
            input_dir
        )

        assert report.failed == 2
        assert {o.template_name for o in report.failures} == {"poster_a", "painting_b"}

    def test_zero_sized_source_is_reported(self, template_dir, input_dir, output_dir, monkeypatch):
        save_solid(input_dir / "empty.png", (4, 4))

        def fake_load(path):
            return SourceImage(name=path.stem, path=path, image=Image.new("RGBA", (0, 0)))

        monkeypatch.setattr(core, "load_source_image", fake_load)

        report = make_pipeline(template_dir, output_dir).run(input_dir)

        assert report.failed == 1
        assert isinstance(report.failures[0].error, InvalidImageError)

    def test_bad_region_is_reported_not_raised(self, input_dir, output_dir):
        broken = Template(
            name="broken",
            category="posters",
            image=Image.new("RGBA", (50, 50), TEMPLATE_COLOR),
            region=PlacementRegion(40, 40, 20, 20),
        )
        save_solid(input_dir / "cat.png", (30, 30))
        pipeline = GenerationPipeline(TemplateRegistry([broken]), OutputWriter(output_dir))

        report = pipeline.run(input_dir)

        assert report.failed == 1
        assert isinstance(report.failures[0].error, CompositeError)

    def test_unexpected_exception_fails_only_its_pair(
        self, template_dir, input_dir, output_dir, monkeypatch
    ):
        for name in ("a.png", "b.png", "c.png"):
            save_solid(input_dir / name, (64, 64))
        real_generate_pair = core.generate_pair

        def generate_pair_out_of_memory_for_a(template, source, writer):
            if source.name == "a":
                raise MemoryError("cannot allocate")
            return real_generate_pair(template, source, writer)

        monkeypatch.setattr(core, "generate_pair", generate_pair_out_of_memory_for_a)

        report = make_pipeline(template_dir, output_dir, max_workers=1).run(input_dir)

        assert report.succeeded == 2
        assert report.failed == 1
        failure = report.failures[0]
        assert failure.source_name == "a"
        assert isinstance(failure.error, CompositeError)
        assert isinstance(failure.error.__cause__, MemoryError)
        assert "MemoryError" in failure.reason
        assert all(o.state is not JobState.RUNNING for o in report.outcomes)

    def test_unexpected_decode_exception_fails_each_template_pair(
        self, tmp_path, input_dir, output_dir, monkeypatch
    ):
        template_dir = write_templates(tmp_path / "templates", [POSTER_A, PAINTING_B])
        save_solid(input_dir / "a.png", (64, 64))
        save_solid(input_dir / "b.png", (64, 64))
        real_load = core.load_source_image

        def load_crashing_on_b(path):
            if path.stem == "b":
                raise RuntimeError("decoder crashed")
            return real_load(path)

        monkeypatch.setattr(core, "load_source_image", load_crashing_on_b)

        report = make_pipeline(template_dir, output_dir, specs=(POSTER_A, PAINTING_B)).run(
            input_dir
        )

        assert report.succeeded == 2
        assert report.failed == 2
        assert {o.source_name for o in report.failures} == {"b"}
        assert all(isinstance(o.error, DecodeError) for o in report.failures)

    def test_duplicate_base_names(self, template_dir, input_dir, output_dir):
        save_solid(input_dir / "cat.png", (64, 64))
        save_solid(input_dir / "cat.jpg", (64, 64), mode="RGB")

        report = make_pipeline(template_dir, output_dir).run(input_dir)

        assert report.succeeded == 1
        assert report.failed == 1
        assert isinstance(report.failures[0].error, DuplicateSourceError)
        assert "cat.png" in str(report.failures[0].error)


class TestProgressAndWorkers:
    def test_progress_called_once_per_pair(self, tmp_path, input_dir, output_dir):
        template_dir = write_templates(tmp_path / "templates", [POSTER_A, PAINTING_B])
        for name in ("a.png", "b.png", "c.png"):
            save_solid(input_dir / name, (32, 32))
        (input_dir / "d.png").write_bytes(b"junk")
        seen = []

        make_pipeline(
            template_dir,
            output_dir,
            specs=(POSTER_A, PAINTING_B),
            on_progress=seen.append,
        ).run(input_dir)

        assert len(seen) == 8
        assert all(o.state in (JobState.SUCCEEDED, JobState.FAILED) for o in seen)

    def test_single_worker(self, template_dir, input_dir, output_dir):
        save_solid(input_dir / "a.png", (32, 32))
        pipeline = make_pipeline(template_dir, output_dir, max_workers=1)

        assert pipeline.max_workers == 1
        assert pipeline.run(input_dir).succeeded == 1

    def test_run_uses_given_plan(self, template_dir, input_dir, output_dir):
        save_solid(input_dir / "a.png", (32, 32))
        pipeline = make_pipeline(template_dir, output_dir)
        jobs = pipeline.plan(input_dir)
        # Appears after planning, so it is not part of this run.
        save_solid(input_dir / "b.png", (32, 32))

        report = pipeline.run(input_dir, jobs=jobs)

        assert report.outcomes == jobs[input_dir / "a.png"]
        assert report.succeeded == 1
        assert not (output_dir / "posters" / "poster_a_b.png").exists()

    @pytest.mark.parametrize(
        "requested, expected",
        [(None, 4), (2, 2), (4, 4), (16, 4), (0, 1)],
    )
    def test_resolve_workers_capped_at_cpu_count(self, monkeypatch, requested, expected):
        monkeypatch.setattr(core.os, "cpu_count", lambda: 4)
        assert resolve_workers(requested) == expected

    def test_resolve_workers_unknown_cpu_count(self, monkeypatch):
        monkeypatch.setattr(core.os, "cpu_count", lambda: None)
        assert resolve_workers() == 1


class TestJobOutcome:
    def test_lifecycle(self):
        outcome = JobOutcome(template_name="poster_a", source_name="cat")
        assert outcome.state is JobState.PENDING

        outcome.start()
        assert outcome.state is JobState.RUNNING

        outcome.succeed(Path("out.png"))
        assert outcome.state is JobState.SUCCEEDED
        assert outcome.output_path == Path("out.png")
        assert outcome.reason is None

    def test_cannot_finish_without_starting(self):
        outcome = JobOutcome(template_name="poster_a", source_name="cat")
        with pytest.raises(RuntimeError):
            outcome.fail(DecodeError("nope"))

    def test_terminal_state_is_final(self):
        outcome = JobOutcome(template_name="poster_a", source_name="cat")
        outcome.start()
        outcome.fail(DecodeError("bad bytes"))

        with pytest.raises(RuntimeError):
            outcome.succeed(Path("out.png"))
        assert outcome.reason == "DecodeError: bad bytes"

    def test_report_counts(self):
        ok = JobOutcome("t", "a")
        ok.start()
        ok.succeed(Path("a.png"))
        bad = JobOutcome("t", "b")
        bad.start()
        bad.fail(DecodeError("x"))

        report = RunReport([ok, bad])

        assert (report.succeeded, report.failed) == (1, 1)
        assert report.failures == [bad]


class TestGeneratePair:
    def test_zero_sized_source(self, template_dir, output_dir):
        template = TemplateRegistry.load(template_dir, [POSTER_A])["poster_a"]
        source = SourceImage(name="empty", path=Path("empty.png"), image=Image.new("RGBA", (0, 5)))

        with pytest.raises(InvalidImageError):
            generate_pair(template, source, OutputWriter(output_dir))
        assert not output_dir.exists()
