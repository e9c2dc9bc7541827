"""
Unit Tests Package.

This package contains mock-based unit tests that test
individual components in isolation.

Tests use mocked dependencies to verify:
- Function behavior with controlled inputs
- Edge cases and error handling
- Component interfaces
"""
