"""Packaging regression tests.

Tests that verify the source layout and installed package behavior.
"""

from pathlib import Path


def test_source_layout():
    """Test that provbuild lives under src/ with its kernel and _internal parts."""
    here = Path(__file__).resolve().parent
    src_provbuild = here.parent / "src" / "provbuild"

    assert src_provbuild.exists(), "provbuild package should exist in src/"
    assert (src_provbuild / "kernel").exists(), "provbuild.kernel should exist"
    assert (src_provbuild / "_internal").exists(), "provbuild._internal should exist"


def test_import_boundary():
    """Test that the package and its kernel import."""
    import provbuild
    import provbuild.kernel.builder  # noqa: F401

    # Check version: in dev mode it's "dev", in installed mode it's "1.0.0"
    assert provbuild.__version__ in ("1.0.0", "dev")


def test_console_script_target():
    from provbuild.cli import main

    assert callable(main)
