"""Unit tests for the entity service, driven by the shipped user rules."""

from pathlib import Path

import pytest

from polaris.config.pipeline_loader import load_pipeline_documents
from polaris.config.settings import Settings
from polaris.domain.entities.service import EntityService
from polaris.domain.pipelines.builder import PipelineModelCache
from polaris.domain.pipelines.exceptions import EntityValidationError
from polaris.domain.pipelines.functions.completers import verify_secret
from polaris.io.connectors.exceptions import IndexNotFoundError

PIPELINES_DIR = Path(__file__).parents[4] / "config" / "pipelines"


@pytest.fixture
def fast_settings():
    return Settings(_env_file=None, MAX_WORKERS=2, secret_hash_iterations=1000)


@pytest.fixture
def published():
    return []


@pytest.fixture
def service(fake_client, fast_settings, published):
    models = PipelineModelCache(fake_client, lambda entity_type: load_pipeline_documents(entity_type, PIPELINES_DIR))
    return EntityService(
        fake_client,
        models,
        publisher=lambda channel, payload: published.append((channel, payload)),
        settings=fast_settings,
    )


@pytest.fixture
def jane():
    return {
        "email": "Jane@Example.COM",
        "name": "Jane Doe",
        "profile": {"age": "42"},
        "status": "closed",
        "password": "hunter2",
        "nickname": "not mapped",
    }


@pytest.mark.unit
class TestCreate:
    def test_runs_every_phase(self, service, jane):
        document = service.create("user", jane)["_source"]

        assert document["email"] == "jane@example.com"
        assert document["roles"] == ["reader"]
        assert document["status"] == "active"
        assert document["key"] == "jane-doe"
        assert document["profile"] == {"age": 42, "locale": "en", "initials": "J. D."}
        assert verify_secret("hunter2", document["password"])

    def test_projects_onto_mapping(self, service, jane, fake_client):
        result = service.create("user", jane, doc_id="u1")

        assert result["_id"] == "u1"
        assert "nickname" not in fake_client.documents["pos_user"]["u1"]

    def test_input_is_left_untouched(self, service, jane):
        original = dict(jane)
        service.create("user", jane)
        assert jane == original

    def test_publishes_set_message(self, service, jane, published):
        result = service.create("user", jane)
        assert published == [("l_message_set_entity_user", result)]

    def test_invalid_entity_is_not_written(self, service, jane, fake_client, published):
        del jane["email"]

        with pytest.raises(EntityValidationError) as excinfo:
            service.create("user", jane)

        assert excinfo.value.field == "email"
        assert excinfo.value.rule == "required"
        assert not [call for call in fake_client.calls if call[0] == "write"]
        assert published == []

    def test_mapping_is_fetched_once(self, service, jane, fake_client):
        service.create("user", jane)
        service.create("user", jane)

        assert [call for call in fake_client.calls if call[0] == "fetch_mapping"] == [
            ("fetch_mapping", "pos_user", "user")
        ]


@pytest.mark.unit
class TestUpdate:
    def test_merges_and_skips_defaults(self, service, jane, fake_client, published):
        service.create("user", jane, doc_id="u1")
        fake_client.documents["pos_user"]["u1"]["roles"] = ["admin"]

        document = service.update("user", "u1", {"status": "closed", "profile": {"age": "43"}})["_source"]

        assert document["roles"] == ["admin"]
        assert document["status"] == "active"
        assert document["profile"]["age"] == 43
        assert document["profile"]["locale"] == "en"
        assert verify_secret("hunter2", document["password"])
        assert published[-1][0] == "l_message_modify_entity_user"

    def test_missing_entity(self, service):
        with pytest.raises(IndexNotFoundError):
            service.update("user", "nope", {"name": "x"})


@pytest.mark.unit
class TestRemove:
    def test_existing(self, service, jane, published):
        service.create("user", jane, doc_id="u1")

        assert service.remove("user", "u1") is True
        assert published[-1] == ("l_message_remove_entity_user", {"_id": "u1"})
        assert service.read("user", "u1") is None

    def test_missing(self, service, published):
        assert service.remove("user", "u1") is False
        assert published == []


@pytest.mark.unit
class TestSearch:
    def test_scoped_where(self, service):
        assert service.scoped_where("user") == {"status": "active"}
        assert service.scoped_where("user", {"email": "a@b.co"}) == {
            "$and": [{"status": "active"}, {"email": "a@b.co"}]
        }

    def test_declared_filters_apply(self, service, fake_client):
        fake_client.add("pos_user", "1", {"email": "a@b.co", "status": "active"})
        fake_client.add("pos_user", "2", {"email": "c@d.co", "status": "closed"})

        result = service.search("user", {"size": 10, "sort": [{"_id": "asc"}]})

        assert [hit["_id"] for hit in result["hits"]] == ["1"]
        assert fake_client.calls[-1][2]["where"] == {"status": "active"}

    def test_entity_type_without_rules(self, fake_client, fast_settings):
        service = EntityService(fake_client, PipelineModelCache(fake_client), settings=fast_settings)
        fake_client.add("pos_note", "1", {"text": "hello"})

        assert service.scoped_where("note") is None
        assert service.search("note", {"where": None})["total"] == 1
