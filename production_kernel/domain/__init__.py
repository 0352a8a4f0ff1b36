"""Pure domain core: values, validation, hour labels, calendar days, rollups."""
