"""Unit tests for the YAML rule-document loader."""

from pathlib import Path

import pytest

from polaris.config.pipeline_loader import PIPELINES_DIR_ENV_VAR, load_pipeline_documents

REPO_PIPELINES_DIR = Path(__file__).resolve().parents[3] / "config" / "pipelines"


@pytest.fixture
def pipelines_dir(tmp_path):
    directory = tmp_path / "pipelines"
    directory.mkdir()
    return directory


@pytest.mark.unit
def test_missing_file_returns_empty_list(pipelines_dir):
    assert load_pipeline_documents("ghost", pipelines_dir) == []


@pytest.mark.unit
def test_empty_file_returns_empty_list(pipelines_dir):
    (pipelines_dir / "user.yml").write_text("", encoding="utf-8")
    assert load_pipeline_documents("user", pipelines_dir) == []


@pytest.mark.unit
def test_single_mapping_becomes_one_document(pipelines_dir):
    (pipelines_dir / "user.yml").write_text(
        "source:\n  filters:\n    - value: '{\"status\": \"active\"}'\n", encoding="utf-8"
    )

    documents = load_pipeline_documents("user", pipelines_dir)

    assert documents == [
        {"name": "user", "source": {"filters": [{"value": '{"status": "active"}'}]}}
    ]


@pytest.mark.unit
def test_list_keeps_file_order_and_fills_source(pipelines_dir):
    (pipelines_dir / "user.yml").write_text("- name: first\n- name: second\n  source:\n", encoding="utf-8")

    documents = load_pipeline_documents("user", pipelines_dir)

    assert [doc["name"] for doc in documents] == ["first", "second"]
    assert all(doc["source"] == {} for doc in documents)


@pytest.mark.unit
def test_invalid_yaml_raises_value_error(pipelines_dir):
    (pipelines_dir / "user.yml").write_text("invalid: yaml: syntax:\n  - missing\n  colon here\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid YAML"):
        load_pipeline_documents("user", pipelines_dir)


@pytest.mark.unit
def test_wrong_shape_raises_value_error(pipelines_dir):
    (pipelines_dir / "user.yml").write_text("- just a string\n", encoding="utf-8")

    with pytest.raises(ValueError, match="expected mapping"):
        load_pipeline_documents("user", pipelines_dir)


@pytest.mark.unit
def test_directory_from_environment(pipelines_dir, monkeypatch):
    (pipelines_dir / "book.yml").write_text("name: book\n", encoding="utf-8")
    monkeypatch.setenv(PIPELINES_DIR_ENV_VAR, str(pipelines_dir))

    assert load_pipeline_documents("book")[0]["name"] == "book"


@pytest.mark.unit
def test_shipped_user_rules_load():
    documents = load_pipeline_documents("user", REPO_PIPELINES_DIR)

    assert len(documents) == 1
    assert documents[0]["source"]["defaults"][0]["key"] == "roles"
