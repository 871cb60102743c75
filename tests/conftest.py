"""
Pytest Configuration for Tank Monitor Tests

Fixtures live in tests/fixtures and are imported here so every test module
sees them.
"""

import os

# Tests never read a developer's tanks.yaml or write log files to the repo
os.environ.setdefault("LOG_TO_FILE", "false")

import pytest

# Import all fixtures
from tests.fixtures.api_fixtures import *  # noqa
from tests.fixtures.database_fixtures import *  # noqa
from tests.fixtures.tank_fixtures import *  # noqa
