"""Jurisdiction presets (tax-year calendars, exemptions, rates)."""
