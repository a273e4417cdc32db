from pydantic import ValidationError
import pytest

from mathbridge.core.config import Settings


def test_observed_policy_defaults():
    s = Settings(_env_file=None)
    assert s.session_duration_minutes == 90
    assert s.reschedule_start_times == ("16:00",)
    assert s.scheduling_lock_enabled is True


def test_start_times_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("MATHBRIDGE_RESCHEDULE_START_TIMES", "16:00, 17:30")
    assert Settings().reschedule_start_times == ("16:00", "17:30")


def test_full_evening_slot_list(monkeypatch):
    monkeypatch.setenv("MATHBRIDGE_RESCHEDULE_START_TIMES", "16:00,17:30,19:00,20:30")
    assert Settings().reschedule_start_times == ("16:00", "17:30", "19:00", "20:30")
    assert "17:30,19:00,20:30" in Settings.model_fields["reschedule_start_times"].description


def test_start_times_from_list():
    assert Settings(reschedule_start_times=["08:00"]).reschedule_start_times == ("08:00",)


@pytest.mark.parametrize("value", ["", "4pm", "25:00", "16:75"])
def test_rejects_bad_start_times(value):
    with pytest.raises(ValidationError):
        Settings(reschedule_start_times=value)


def test_duration_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(session_duration_minutes=0)


def test_is_postgres():
    assert Settings(database_url="postgresql+psycopg2://u@h/db").is_postgres
    assert not Settings(database_url="sqlite+pysqlite://").is_postgres
