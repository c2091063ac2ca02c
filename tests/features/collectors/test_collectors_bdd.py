"""BDD tests for collector behaviour."""

import pytest
from pytest_bdd import scenarios

scenarios(".")

pytestmark = [pytest.mark.tier(2), pytest.mark.collectors]
