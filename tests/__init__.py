# CRM Console Test Suite
#
# This package contains:
# - Session lifecycle and 401 teardown tests
# - API client error classification tests
# - Page tests for customers, fulfillments, stores and the dashboard
# - CLI tests
#
# Every test talks to an in-memory backend through httpx.MockTransport.
# Run with: python -m tests.run [smoke|full]
