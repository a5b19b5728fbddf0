import importlib


def test_import_package():
    """Basic smoke test: can import the package and check version."""
    pkg = importlib.import_module("precip_rank")

    assert hasattr(pkg, "__version__")
    assert pkg.__version__.startswith("0.")


def test_import_functions():
    """Check that key functions are exposed at top-level."""
    import precip_rank as pr

    assert hasattr(pr, "__version__")
    assert hasattr(pr, "__author__")

    expected_exports = {
        "align_ensemble",
        "stack_to_table",
        "compute_ensemble_statistics",
        "run_precipitation_rank",
        "GeometryError",
        "RowShapeError",
    }

    for name in expected_exports:
        assert hasattr(pr, name), f"Expected '{name}' to be re-exported"

    assert expected_exports.issubset(set(pr.__all__))
