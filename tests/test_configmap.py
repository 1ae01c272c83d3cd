import pytest
import yaml
from kubernetes.client.rest import ApiException

from pghero_operator.resources.configmap import ConfigAggregator, create_configmap, render_database_yaml
from pghero_operator.utils.errors import AggregationConflictError

COUNT = "pghero.mithucste30.io/database-count"


def test_render_single_database():
    assert render_database_yaml({"prod": "postgres://u:p@db:5432/app"}) == (
        "databases:\n  prod:\n    url: postgres://u:p@db:5432/app\n"
    )


def test_render_is_sorted_and_parseable():
    text = render_database_yaml({"b": "postgres://b@h/b", "a": "postgres://a@h/a"})

    assert text.index("  a:") < text.index("  b:")
    assert yaml.safe_load(text) == {
        "databases": {"a": {"url": "postgres://a@h/a"}, "b": {"url": "postgres://b@h/b"}}
    }


def test_render_empty():
    assert yaml.safe_load(render_database_yaml({})) == {"databases": {}}


def test_create_configmap_preserves_foreign_metadata():
    existing = {
        "metadata": {
            "name": "pghero-databases",
            "resourceVersion": "42",
            "labels": {"team": "dba"},
            "annotations": {"note": "keep", COUNT: "7"},
        }
    }

    body = create_configmap("team-a", {"prod": "postgres://a@h/db"}, existing)

    assert body["metadata"]["resourceVersion"] == "42"
    assert body["metadata"]["labels"]["team"] == "dba"
    assert body["metadata"]["labels"]["app.kubernetes.io/managed-by"] == "pghero-operator"
    assert body["metadata"]["annotations"] == {"note": "keep", COUNT: "1"}


class TestUpsert:
    def test_creates_configmap(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})

        assert aggregator.upsert("team-a", "prod", "postgres://a@h/prod") == "pghero-databases"

        config_map = kube.config_maps[("team-a", "pghero-databases")]
        assert config_map["data"]["database.yml"] == "databases:\n  prod:\n    url: postgres://a@h/prod\n"
        assert config_map["metadata"]["annotations"][COUNT] == "1"
        assert config_map["metadata"]["labels"] == {
            "app.kubernetes.io/name": "pghero",
            "app.kubernetes.io/component": "database-config",
            "app.kubernetes.io/managed-by": "pghero-operator",
        }

    def test_uses_resolved_url_for_current(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "urlFromSecret": {"name": "s", "key": "url"}})

        aggregator.upsert("team-a", "prod", "postgres://resolved@h/prod")

        assert "postgres://resolved@h/prod" in kube.config_map_data("team-a")

    def test_aggregates_namespace_and_skips_unresolvable(self, kube, aggregator):
        kube.add_secret("team-a", "analytics", {"url": "postgres://an@h/analytics"})
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        kube.add_database(
            "team-a", "analytics", {"name": "analytics", "urlFromSecret": {"name": "analytics", "key": "url"}}
        )
        kube.add_database("team-a", "broken", {"name": "broken", "urlFromSecret": {"name": "gone", "key": "url"}})
        kube.add_database("team-a", "off", {"name": "off", "url": "postgres://o@h/off", "enabled": False})
        kube.add_database("team-b", "elsewhere", {"name": "elsewhere", "url": "postgres://e@h/e"})

        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        config_map = kube.config_maps[("team-a", "pghero-databases")]
        assert yaml.safe_load(config_map["data"]["database.yml"]) == {
            "databases": {
                "analytics": {"url": "postgres://an@h/analytics"},
                "prod": {"url": "postgres://a@h/prod"},
            }
        }
        assert config_map["metadata"]["annotations"][COUNT] == "2"

    def test_disabled_current_resource_is_excluded(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod", "enabled": False})

        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        assert yaml.safe_load(kube.config_map_data("team-a")) == {"databases": {}}

    def test_skips_resources_being_deleted(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        kube.add_database(
            "team-a", "old", {"name": "old", "url": "postgres://o@h/old"},
            deletionTimestamp="2026-10-19T12:00:00Z",
        )

        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        assert "old" not in yaml.safe_load(kube.config_map_data("team-a"))["databases"]

    def test_updates_existing_configmap(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        kube.update_spec("team-a", "prod", name="production")
        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        assert yaml.safe_load(kube.config_map_data("team-a"))["databases"] == {
            "production": {"url": "postgres://a@h/prod"}
        }

    def test_retries_after_conflict(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        # A sibling adds itself and rewrites the ConfigMap between our read and write
        def sibling_writes(namespace):
            kube.before_config_map_write = None
            kube.add_database("team-a", "analytics", {"name": "analytics", "url": "postgres://an@h/an"})
            ConfigAggregator(kube).upsert("team-a", "analytics", "postgres://an@h/an")

        kube.before_config_map_write = sibling_writes
        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        assert set(yaml.safe_load(kube.config_map_data("team-a"))["databases"]) == {"prod", "analytics"}

    def test_create_race_is_retried_as_update(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        kube.add_database("team-a", "analytics", {"name": "analytics", "url": "postgres://an@h/an"})

        def sibling_creates(namespace):
            kube.before_config_map_write = None
            ConfigAggregator(kube).upsert("team-a", "analytics", "postgres://an@h/an")

        kube.before_config_map_write = sibling_creates
        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        assert kube.config_map_writes == 2
        assert set(yaml.safe_load(kube.config_map_data("team-a"))["databases"]) == {"prod", "analytics"}

    def test_gives_up_after_max_attempts(self, kube):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        kube.config_maps[("team-a", "pghero-databases")] = create_configmap("team-a", {})
        kube.config_maps[("team-a", "pghero-databases")]["metadata"]["resourceVersion"] = "1"

        def always_bump(namespace):
            kube.config_maps[("team-a", "pghero-databases")]["metadata"]["resourceVersion"] += "1"

        kube.before_config_map_write = always_bump

        with pytest.raises(AggregationConflictError):
            ConfigAggregator(kube, max_attempts=3).upsert("team-a", "prod", "postgres://a@h/prod")

    def test_api_failure_propagates(self, kube, aggregator):
        kube.list_error = ApiException(status=500, reason="Internal Server Error")

        with pytest.raises(ApiException):
            aggregator.upsert("team-a", "prod", "postgres://a@h/prod")


class TestRebuild:
    def test_noop_without_configmap(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})

        aggregator.rebuild("team-a", "prod")

        assert kube.config_maps == {}

    def test_excludes_deleted_resource(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        kube.add_database("team-a", "analytics", {"name": "analytics", "url": "postgres://an@h/an"})
        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        aggregator.rebuild("team-a", "prod")

        config_map = kube.config_maps[("team-a", "pghero-databases")]
        assert yaml.safe_load(config_map["data"]["database.yml"])["databases"] == {
            "analytics": {"url": "postgres://an@h/an"}
        }
        assert config_map["metadata"]["annotations"][COUNT] == "1"

    def test_last_resource_leaves_empty_configmap(self, kube, aggregator):
        kube.add_database("team-a", "prod", {"name": "prod", "url": "postgres://a@h/prod"})
        aggregator.upsert("team-a", "prod", "postgres://a@h/prod")

        aggregator.rebuild("team-a", "prod")

        config_map = kube.config_maps[("team-a", "pghero-databases")]
        assert yaml.safe_load(config_map["data"]["database.yml"]) == {"databases": {}}
        assert config_map["metadata"]["annotations"][COUNT] == "0"
