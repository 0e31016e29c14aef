import pytest
from pydantic import ValidationError

from geoselfie.config import Settings


def test_defaults(monkeypatch):
    for name in ("MAX_PHOTO_AGE_MINUTES", "DISTANCE_THRESHOLD_METERS", "ENFORCE_GEO_MATCH", "PORT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.max_photo_age_minutes == 5
    assert settings.distance_threshold_meters == 50
    assert settings.enforce_geo_match is False
    assert settings.exif_timezone is None
    assert settings.port == 3000


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MAX_PHOTO_AGE_MINUTES", "15")
    monkeypatch.setenv("DISTANCE_THRESHOLD_METERS", "120.5")
    monkeypatch.setenv("ENFORCE_GEO_MATCH", "true")
    monkeypatch.setenv("MONGO_URI", "mongodb://db:27017/checkins")

    settings = Settings(_env_file=None)

    assert settings.max_photo_age_minutes == 15
    assert settings.distance_threshold_meters == 120.5
    assert settings.enforce_geo_match is True
    assert settings.mongo_uri == "mongodb://db:27017/checkins"


@pytest.mark.parametrize("field", ["max_photo_age_minutes", "distance_threshold_meters"])
@pytest.mark.parametrize("value", [0, -5])
def test_thresholds_must_be_positive(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_settings_are_frozen():
    settings = Settings(_env_file=None)
    with pytest.raises(ValidationError):
        settings.max_photo_age_minutes = 60
