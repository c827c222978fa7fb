"""Unit tests for the completer functions."""

import pytest

from polaris.domain.pipelines.exceptions import IndexLookupError
from polaris.domain.pipelines.functions.completers import (
    HASH_PREFIX,
    denormalization,
    generic_complete,
    hash_secret,
    initial,
    is_hashed_secret,
    key_complete,
    make_initials,
    secret_complete,
    slugify,
    verify_secret,
)
from polaris.io.connectors.exceptions import IndexNotFoundError


@pytest.fixture
def context(settings, fake_client):
    return {"settings": settings, "index_client": fake_client, "index_prefix": settings.index_prefix}


@pytest.mark.unit
class TestSlugify:
    @pytest.mark.parametrize(
        "text, expected",
        [("Hello World", "hello-world"), ("  Crème Brûlée!  ", "creme-brulee"), ("a--b__c", "a-b-c"), (12, "12")],
    )
    def test_values(self, text, expected):
        assert slugify(text) == expected

    def test_nothing_left(self):
        assert slugify("!!!") is None
        assert slugify(None) is None


@pytest.mark.unit
class TestKeyComplete:
    def test_existing_value_is_normalized(self, context):
        assert key_complete()({}, "My Key", context) == "my-key"

    def test_derived_from_container_fields(self, context):
        entity = {"title": "First Post"}
        assert key_complete()(entity, None, {**context, "container": entity}) == "first-post"

    def test_nothing_to_derive_from(self, context):
        assert key_complete()({}, None, context) is None


@pytest.mark.unit
class TestSecrets:
    def test_hash_and_verify(self):
        hashed = hash_secret("s3cret", 1000)

        assert hashed.startswith(f"{HASH_PREFIX}$1000$")
        assert is_hashed_secret(hashed)
        assert verify_secret("s3cret", hashed)
        assert not verify_secret("other", hashed)
        assert not verify_secret("s3cret", "plain")

    def test_salt_differs_per_hash(self):
        assert hash_secret("a", 1000) != hash_secret("a", 1000)

    def test_completer_hashes_plain_value(self, context, settings):
        hashed = secret_complete()({}, "pw", context)

        assert verify_secret("pw", hashed)
        assert hashed.split("$")[1] == str(settings.secret_hash_iterations)

    def test_completer_keeps_hashed_value(self, context):
        hashed = hash_secret("pw", 1000)
        assert secret_complete()({}, hashed, context) == hashed

    def test_completer_falls_back_to_default_password(self, context, settings):
        hashed = secret_complete()({}, None, context)
        assert verify_secret(settings.default_password, hashed)


@pytest.mark.unit
class TestInitials:
    @pytest.mark.parametrize(
        "text, expected",
        [("Jean-Pierre Marie", "J.-P. M."), ("ada lovelace", "A. L."), ("  Ada  ", "A.")],
    )
    def test_make_initials(self, text, expected):
        assert make_initials(text) == expected

    def test_suffix(self):
        assert make_initials("Jean-Pierre Marie", "") == "J-P M"

    def test_reads_container_before_entity(self, context):
        entity = {"name": "Entity Name", "authors": [{"name": "Grace Hopper"}]}
        container = entity["authors"][0]

        assert initial("name")(entity, None, {**context, "container": container}) == "G. H."
        assert initial("name")(entity, None, {**context, "container": entity}) == "E. N."

    def test_missing_source_keeps_current(self, context):
        assert initial("name")({}, "X.", context) == "X."


@pytest.mark.unit
def test_generic_complete_renders_over_entity(context):
    completer = generic_complete("{{ first }}.{{ last }}")
    assert completer({"first": "jane", "last": "doe"}, None, context) == "jane.doe"


@pytest.mark.unit
class TestDenormalization:
    @pytest.fixture(autouse=True)
    def organizations(self, fake_client):
        fake_client.add("pos_org", "1", {"code": "acme", "name": "ACME Corp"})
        fake_client.add("pos_org", "2", {"code": "initech", "name": "Initech"})

    def test_projects_related_value(self, context):
        completer = denormalization("org", "org", "code", "name")
        assert completer({"org": "acme"}, None, context) == "ACME Corp"

    def test_list_source_yields_list(self, context):
        completer = denormalization("orgs", "org", "code", "name")
        assert completer({"orgs": ["initech", "acme"]}, None, context) == ["Initech", "ACME Corp"]

    def test_no_match_returns_default(self, context):
        completer = denormalization("org", "org", "code", "name", "unknown")
        assert completer({"org": "nope"}, None, context) == "unknown"

    def test_missing_source_returns_default(self, context, fake_client):
        completer = denormalization("org", "org", "code", "name")

        assert completer({}, None, context) is None
        assert not [call for call in fake_client.calls if call[0] == "search"]

    def test_queries_prefixed_index(self, context, fake_client):
        denormalization("org", "org", "code", "name")({"org": "acme"}, None, context)

        _, index, body = fake_client.calls[-1]
        assert index == "pos_org"
        assert body == {"size": 1, "where": {"code": "acme"}}

    def test_client_failure_becomes_lookup_error(self, context, fake_client):
        fake_client.search_error = IndexNotFoundError("missing index", index="pos_org", status_code=404)

        with pytest.raises(IndexLookupError) as excinfo:
            denormalization("org", "org", "code", "name")({"org": "acme"}, None, context)

        assert isinstance(excinfo.value.__cause__, IndexNotFoundError)

    def test_requires_index_client(self, settings):
        with pytest.raises(IndexLookupError):
            denormalization("org", "org", "code", "name")({"org": "acme"}, None, {"settings": settings})
