from datetime import timedelta

from tourneyhub.env_check import check_environment
from tourneyhub.games import live_duration, minimum_roster, roster_cap


def test_roster_cap_defaults_and_overrides():
    assert roster_cap("BGMI", env={}) == 4
    assert roster_cap("cod", env={"ROSTER_CAP_COD": "6"}) == 6
    assert roster_cap("BGMI", env={"ROSTER_CAP_BGMI": "nonsense"}) == 4
    assert roster_cap("BGMI", env={"ROSTER_CAP_BGMI": "0"}) == 4


def test_live_duration_falls_back_to_global_setting():
    assert live_duration("BGMI", env={}) == timedelta(minutes=120)
    assert live_duration("BGMI", env={"TOURNAMENT_DURATION_MINUTES": "90"}) == timedelta(minutes=90)
    env = {"TOURNAMENT_DURATION_MINUTES": "90", "TOURNAMENT_DURATION_MINUTES_FREEFIRE": "45"}
    assert live_duration("FREEFIRE", env=env) == timedelta(minutes=45)


def test_minimum_roster_by_mode():
    assert minimum_roster("Solo") == 1
    assert minimum_roster("duo") == 2
    assert minimum_roster("Squad") == 4
    assert minimum_roster("unknown") == 4


def test_check_environment_reports_missing_settings(caplog):
    report = check_environment({"DATABASE_URL": "postgresql://u:p@h/db", "JWT_SECRET": "0123456789abcdef"})

    assert report["database"] is True
    assert report["jwt secret"] is True
    assert report["legacy supabase url"] is False
    assert "legacy supabase url is not configured" in caplog.text
    assert "0123456789abcdef" not in caplog.text
