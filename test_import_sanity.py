"""Import sanity tests.

These lightweight tests verify that the CLI entrypoint and core modules
can be imported without errors, the minimum bar before a release.
"""

import pytest


def test_cli_module_imports():
    """The command-line entrypoint must import without errors."""
    import evaluate_location  # noqa: F401
    assert callable(evaluate_location.main)


def test_coordinator_imports():
    """Core symbols used by the CLI must be importable."""
    from refresh import RefreshCoordinator, LocationSnapshot, TriggerReason
    assert RefreshCoordinator is not None
    assert LocationSnapshot is not None
    assert TriggerReason.GEOLOCATION_FIX is not None


def test_engine_components_import():
    from amenities import AmenityAggregator
    from commute import CommuteEstimator
    from geocoding import SearchSuggestionProvider
    from insights import compute_insights
    from institutions import nearest_institution
    assert all([
        AmenityAggregator, CommuteEstimator, SearchSuggestionProvider,
        compute_insights, nearest_institution,
    ])


def test_scoring_model_validates_at_import():
    from scoring_config import SCORING_MODEL
    assert SCORING_MODEL.version


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
