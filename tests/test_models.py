"""Tests for hard75.data.models — records and the pending-change format."""

from dataclasses import asdict

from hard75.data.models import (
    Challenge,
    ChangeType,
    CustomTask,
    PendingChange,
    TaskCompletion,
    UserProfile,
    is_temp_id,
)


def test_challenge_from_api_row():
    challenge = Challenge.from_dict({
        "id": 7,
        "user_id": "u1",
        "start_date": "2024-01-01",
        "end_date": "2024-03-15",
        "is_active": True,
        "current_day": 12,
    })
    assert challenge.id == "7"
    assert challenge.current_day == 12
    assert challenge.is_active is True


def test_challenge_defaults_for_missing_fields():
    challenge = Challenge.from_dict({"id": "c1", "start_date": "2024-01-01"})
    assert challenge.current_day == 1
    assert challenge.is_active is False
    assert challenge.end_date == ""


def test_task_temporary_flag():
    assert CustomTask(id="temp_1700000000000_ab12cd", task_text="Walk").is_temporary
    assert not CustomTask(id="4f1c9a", task_text="Walk").is_temporary


def test_is_temp_id_accepts_non_strings():
    assert is_temp_id(42) is False


def test_profile_from_dict():
    profile = UserProfile.from_dict({"id": "u1", "name": "Sam", "email": "sam@example.com"})
    assert profile.name == "Sam"
    assert profile.avatar_url is None


def test_completion_serializable():
    completion = TaskCompletion(task_id="t1", date="2024-01-05", completed=True)
    assert TaskCompletion.from_dict(asdict(completion)) == completion


def test_pending_change_round_trip():
    change = PendingChange(
        type=ChangeType.INITIALIZE_DEFAULT_TASKS,
        data={"tasks": ["A", "B"]},
        temp_ids=["temp_1_0", "temp_1_1"],
    )
    restored = PendingChange.from_dict(change.to_dict())
    assert restored == change
    assert restored.type is ChangeType.INITIALIZE_DEFAULT_TASKS
