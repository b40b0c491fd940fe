import logging
from dataclasses import replace
from unittest.mock import Mock, patch

import pytest

from models import ADD_MEMBERSHIP, CREATE_GROUP, FETCH_SOURCE_GROUPS, FETCH_USER_GROUPS
import sync


@pytest.fixture
def workspace(keycloak):
    keycloak.add_group("/workspace")
    keycloak.add_group("/workspace/eng")
    keycloak.add_group("/workspace/sales")
    return keycloak


def test_cycle_scenario_alice_and_bob(workspace, google, settings):
    workspace.add_user("alice")
    workspace.join("alice", "/workspace/eng")
    workspace.add_user("bob")
    workspace.join("bob", "/workspace/eng")
    workspace.join("bob", "/workspace/legacy")
    google.groups = {"alice": ["eng", "sales"], "bob": ["eng"]}

    report = sync.run_cycle(workspace, google, settings)

    assert report.aborted is None
    assert workspace.add_calls == [("alice", "sales")]
    assert workspace.remove_calls == [("bob", "legacy")]
    assert workspace.create_calls == []
    assert report.failures == []
    assert report.reconciled_users == 2
    assert google.calls == [("example.com", "alice"), ("example.com", "bob")]


def test_second_cycle_is_idempotent(workspace, google, settings):
    for name in ("alice", "bob"):
        workspace.add_user(name)
    workspace.join("bob", "/workspace/sales")
    google.groups = {"alice": ["eng", "ops"], "bob": ["ops"]}

    sync.run_cycle(workspace, google, settings)
    workspace.add_calls.clear()
    workspace.remove_calls.clear()
    workspace.create_calls.clear()

    report = sync.run_cycle(workspace, google, settings)

    assert workspace.add_calls == []
    assert workspace.remove_calls == []
    assert workspace.create_calls == []
    assert report.results == []
    assert workspace.paths_of("alice") == {"/workspace/eng", "/workspace/ops"}
    assert workspace.paths_of("bob") == {"/workspace/ops"}


def test_group_needed_by_many_users_is_created_once(workspace, google, settings):
    for name in ("u1", "u2", "u3", "u4"):
        workspace.add_user(name)
        google.groups[name] = ["newgroup"]

    report = sync.run_cycle(workspace, google, settings)

    assert workspace.create_calls == ["newgroup"]
    assert report.count(CREATE_GROUP) == 1
    assert report.count(ADD_MEMBERSHIP) == 4


def test_user_group_fetch_failure_is_isolated(workspace, google, settings):
    for name in ("a", "b", "c"):
        workspace.add_user(name)
        workspace.join(name, "/workspace/eng")
        google.groups[name] = ["sales"]
    workspace.fail_user_groups.add("b")

    report = sync.run_cycle(workspace, google, settings)

    assert workspace.paths_of("a") == {"/workspace/sales"}
    assert workspace.paths_of("c") == {"/workspace/sales"}
    assert workspace.paths_of("b") == {"/workspace/eng"}
    assert report.skipped_users == ["b"]
    assert [r.action for r in report.failures] == [FETCH_USER_GROUPS]
    assert ("example.com", "b") not in google.calls


def test_source_fetch_failure_leaves_user_untouched(workspace, google, settings):
    for name in ("a", "b"):
        workspace.add_user(name)
        workspace.join(name, "/workspace/eng")
    google.groups = {"a": [], "b": []}
    google.failing.add("b")

    report = sync.run_cycle(workspace, google, settings)

    assert workspace.paths_of("a") == set()
    assert workspace.paths_of("b") == {"/workspace/eng"}
    assert [(r.action, r.username) for r in report.failures] == [(FETCH_SOURCE_GROUPS, "b")]


def test_failed_group_creation_does_not_stop_cycle(workspace, google, settings):
    workspace.add_user("a")
    workspace.add_user("b")
    workspace.fail_create.add("broken")
    google.groups = {"a": ["broken", "eng"], "b": ["broken", "sales"]}

    report = sync.run_cycle(workspace, google, settings)

    assert workspace.create_calls == ["broken"]
    assert workspace.paths_of("a") == {"/workspace/eng"}
    assert workspace.paths_of("b") == {"/workspace/sales"}
    assert report.aborted is None
    assert {(r.action, r.username, r.group) for r in report.failures} == {
        (CREATE_GROUP, None, "broken"),
        (ADD_MEMBERSHIP, "a", "broken"),
        (ADD_MEMBERSHIP, "b", "broken"),
    }


def test_usernames_and_groups_with_double_underscores(workspace, google, settings):
    workspace.add_user("a__b")
    workspace.add_user("a")
    google.groups = {"a__b": ["c"], "a": ["b__c"]}

    report = sync.run_cycle(workspace, google, settings)

    assert report.aborted is None
    assert report.failures == []
    assert workspace.paths_of("a__b") == {"/workspace/c"}
    assert workspace.paths_of("a") == {"/workspace/b__c"}


def test_parent_group_created_on_first_run(keycloak, google, settings):
    keycloak.add_user("alice")
    google.groups = {"alice": ["eng"]}

    report = sync.run_cycle(keycloak, google, settings)

    assert keycloak.create_calls == ["workspace", "eng"]
    assert keycloak.paths_of("alice") == {"/workspace/eng"}
    assert report.aborted is None


@pytest.mark.parametrize("breakage", ["fail_list_users", "fail_children", "fail_find"])
def test_enumeration_failure_aborts_cycle(workspace, google, settings, breakage):
    workspace.add_user("alice")
    google.groups = {"alice": ["ops"]}
    setattr(workspace, breakage, True)

    report = sync.run_cycle(workspace, google, settings)

    assert report.aborted
    assert report.finished_at is not None
    assert workspace.add_calls == []
    assert workspace.create_calls == []
    assert google.calls == []


def test_authentication_failure_aborts_cycle(workspace, google, settings):
    workspace.add_user("alice")
    workspace.session.fail_login = True

    report = sync.run_cycle(workspace, google, settings)

    assert "token endpoint unreachable" in report.aborted
    assert google.calls == []


class StopLoop(Exception):
    pass


def test_run_forever_keeps_going_after_aborted_cycle(workspace, google, settings):
    workspace.add_user("alice")
    google.groups = {"alice": ["eng"]}
    workspace.fail_list_users = True

    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 1:
            workspace.fail_list_users = False
            return
        raise StopLoop()

    with pytest.raises(StopLoop):
        sync.run_forever(workspace, google, settings, sleep=sleep)

    assert sleeps == [600.0, 600.0]
    assert workspace.paths_of("alice") == {"/workspace/eng"}


def test_run_forever_survives_unexpected_error(monkeypatch, workspace, google, settings):
    run_cycle = Mock(side_effect=[RuntimeError("boom"), sync.CycleReport().finish()])
    monkeypatch.setattr(sync, "run_cycle", run_cycle)

    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 2:
            raise StopLoop()

    with pytest.raises(StopLoop):
        sync.run_forever(workspace, google, settings, sleep=sleep)

    assert run_cycle.call_count == 2
    assert sleeps == [600.0, 600.0]


def test_dry_run_summary_says_would(caplog, workspace, google, settings):
    workspace.add_user("alice")
    google.groups = {"alice": ["eng", "ops"]}

    with caplog.at_level(logging.INFO, logger="sync"):
        report = sync.run_cycle(workspace, google, replace(settings, dry_run=True))
        sync.log_report(report)

    assert report.dry_run
    summary = [r.getMessage() for r in caplog.records if "cycle finished" in r.getMessage()]
    assert len(summary) == 1
    assert summary[0].startswith("[DRY RUN]")
    assert "would add 2 memberships" in summary[0]
    assert "would create 1 groups" in summary[0]
    assert "groups created" not in summary[0]


def test_main_reports_every_config_error(capsys, monkeypatch):
    monkeypatch.setattr(sync, "load_config", Mock(side_effect=sync.ConfigError([
        "--gsuite-domain is required",
        "--reconcile-interval must be positive",
    ])))

    assert sync.main([]) == 1

    err = capsys.readouterr().err
    assert "Error: Invalid arguments:" in err
    assert "  * --gsuite-domain is required" in err
    assert "  * --reconcile-interval must be positive" in err


def test_main_once_exit_status(monkeypatch, settings, keycloak, google):
    monkeypatch.setattr(sync, "load_config", Mock(return_value=replace(settings, once=True)))
    monkeypatch.setattr(sync, "GoogleDirectory", Mock(return_value=google))
    google.connect = Mock()
    keycloak.fail_list_users = True

    with patch.object(sync, "KeycloakClient", return_value=keycloak), \
            patch.object(sync, "KeycloakSession") as session_class:
        assert sync.main([]) == 1

        keycloak.fail_list_users = False
        assert sync.main([]) == 0

    assert session_class.return_value.close.call_count == 2


def test_main_fails_when_google_client_cannot_be_built(monkeypatch, settings):
    google = Mock()
    google.connect.side_effect = ValueError("malformed credentials")
    monkeypatch.setattr(sync, "load_config", Mock(return_value=settings))
    monkeypatch.setattr(sync, "GoogleDirectory", Mock(return_value=google))
    run_forever = Mock()
    monkeypatch.setattr(sync, "run_forever", run_forever)

    assert sync.main([]) == 1
    run_forever.assert_not_called()
