import pytest

from tests.imaging import POSTER_A, write_templates


@pytest.fixture
def template_dir(tmp_path):
    return write_templates(tmp_path / "templates", [POSTER_A])


@pytest.fixture
def input_dir(tmp_path):
    path = tmp_path / "input"
    path.mkdir()
    return path


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "output"
