"""
Tests for domain models.
"""

from service_directory.app.domain.models import new_id


def test_new_id_is_version_7():
    """Test generated ids are UUIDv7."""
    assert {new_id().version for _ in range(50)} == {7}


def test_new_id_is_time_ordered():
    """Test ids generated in sequence sort in generation order."""
    ids = [new_id() for _ in range(200)]

    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)
