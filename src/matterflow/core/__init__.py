"""Shared logging and OpenTelemetry setup."""
