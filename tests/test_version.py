"""Tests for version helpers."""

import pytest

import timeline_ledger
from timeline_ledger import version
from timeline_ledger.cli import main


def test_package_version_matches_dunder_version():
    assert version.get_package_version() == version.PACKAGE_VERSION
    assert timeline_ledger.__version__ == version.PACKAGE_VERSION


def test_cli_reports_package_version(capsys):
    with pytest.raises(SystemExit):
        main(["--version"])

    assert capsys.readouterr().out.strip() == f"timeline-ledger {version.PACKAGE_VERSION}"
