"""Tests for the polymediator query router."""
