"""
Test suites package.

This repository intentionally keeps `testsuites` importable to support:
  - IDE navigation
  - the UI framework (`testsuites.ui_testing.framework`) used by test code
  - shared test doubles (`testsuites.unit.fake_browser`)
"""
