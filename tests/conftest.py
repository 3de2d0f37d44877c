"""Pytest configuration for all tests."""

import os

from hypothesis import settings

# Each example spins up its own event loop, so per-example timing is noisy
settings.register_profile("ci", deadline=None)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
