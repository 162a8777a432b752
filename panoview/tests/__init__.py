"""
Test suite for the `panoview` module.

This package contains unit and integration tests for `panoview` functionality, including:

- `grid` tests: zoom resolution and tile rectangle geometry.
- `core` tests: fetching tiles with retries, bounded concurrency, cancellation,
  downloading panoramas and batch processing.
- `assembler` tests: tile placement, missing tiles and border cropping.
- `views` tests: view configuration and projection properties.
- `my_utils` tests: encoding, saving and helpers.
- Async tests using `pytest.mark.asyncio` with fake transports instead of the network.

Usage:

    # Run all tests in the package
    pytest panoview/tests

    # Run a specific test file
    pytest panoview/tests/test_core.py
"""
