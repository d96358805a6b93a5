"""
Session Migration Harness.

Verifies the one-time move of session records from the generic ``meta``
table into the dedicated ``sessions`` table against a throwaway postgres
container:

- Ephemeral database provisioning and guaranteed teardown
- Subject build and supervised boot with readiness polling
- Fixture seeding and expected-vs-actual database verification
"""

__version__ = "0.1.0"
